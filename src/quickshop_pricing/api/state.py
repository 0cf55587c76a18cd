"""
Shared API state - one engine, catalog and rules service per process.
"""
import logging

from ..config.settings import configure_logging, get_settings
from ..data.catalog import Catalog
from ..engine import DiscountEngine
from ..services.rules_service import RulesService

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings)


def load_catalog() -> Catalog:
    try:
        return Catalog.from_csv(settings.catalog_csv)
    except (FileNotFoundError, ValueError) as e:
        logger.warning("Catalog unavailable, SKU lookups disabled: %s", e)
        return Catalog.empty()


catalog = load_catalog()
engine = DiscountEngine.from_settings(settings)
rules_service = RulesService(
    rules_csv_path=settings.rules_csv,
    compiled_rules_path=settings.compiled_rules,
    catalog=catalog,
)

if not engine.rules:
    logger.warning("No compiled rules at %s; run compile_rules first", settings.compiled_rules)
