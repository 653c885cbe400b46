"""Database models package."""
from dataport.db.models.client import Client
from dataport.db.models.column_mapping import ColumnMapping
from dataport.db.models.import_job import ImportJob
from dataport.db.models.product import Product

__all__ = ["Client", "ColumnMapping", "ImportJob", "Product"]
