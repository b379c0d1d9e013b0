from .catalog_loader import CatalogLoader, DEFAULT_QUERY_CATALOG, category_for

__all__ = ['CatalogLoader', 'DEFAULT_QUERY_CATALOG', 'category_for']
