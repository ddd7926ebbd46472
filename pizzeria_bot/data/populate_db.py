import json
import os

from .database import SessionLocal, create_tables
from .models import Ingredient, Product, ProductIngredient
from ..utils.logger import get_logger

logger = get_logger("seed")

MENU_JSON_PATH = os.path.join(os.path.dirname(__file__), "raw", "menu.json")

def populate_products(session_factory=SessionLocal, path=MENU_JSON_PATH, bind=None):
    """Read menu.json and populate products, ingredients and recipes."""
    # Ensure tables are created
    create_tables(bind=bind)

    db = session_factory()
    try:
        if db.query(Product).count() > 0:
            logger.info("Products table is not empty. Skipping population.")
            return False

        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        for row in data.get("products", []):
            db.add(Product(
                id=row["id"],
                name=row["name"],
                description=row.get("description", ""),
                category=row["category"],
                prices=row["prices"],
                keywords=row.get("keywords", []),
                is_active=row.get("is_active", True),
            ))

        ingredients = {}
        for row in data.get("ingredients", []):
            ingredient = Ingredient(**row)
            db.add(ingredient)
            ingredients[row["name"]] = ingredient
        db.flush()

        for row in data.get("recipes", []):
            db.add(ProductIngredient(
                product_id=row["product_id"],
                ingredient_id=ingredients[row["ingredient"]].id,
                quantity=row["quantity"],
            ))

        db.commit()
        logger.info("Successfully populated the menu tables.")
        return True
    except Exception:
        db.rollback()
        logger.exception("Error populating menu tables")
        raise
    finally:
        db.close()

if __name__ == "__main__":
    populate_products()
