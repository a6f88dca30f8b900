"""Access to a tenant's on-prem 3CX host: SSH tunnel, source database and remote files."""
