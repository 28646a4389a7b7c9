"""Wire models shared by the server and client libraries."""
