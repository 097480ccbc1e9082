"""Bootstrap and run restic + mysqldump backups to S3."""

__version__ = "0.1.0"
