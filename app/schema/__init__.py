"""Schema package: raw model payload structs and database rows."""
