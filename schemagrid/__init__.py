"""SchemaGrid - collaborative grid editing for schema documents."""

__version__ = "0.1.0"
