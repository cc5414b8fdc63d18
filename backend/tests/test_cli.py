import unittest

from webill import create_app
from webill.extensions import db
from webill.models import Category, Item, Party
from webill.services import ledger_service


class CliCommandTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()
        cls.runner = cls.app.test_cli_runner()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        result = self.runner.invoke(args=["webill", "reset-db", "--yes"])
        self.assertEqual(result.exit_code, 0, result.output)

    def _counts(self):
        return (
            db.session.query(Category).count(),
            db.session.query(Party).count(),
            db.session.query(Item).count(),
        )

    def test_seed_demo_is_repeatable(self):
        first = self.runner.invoke(args=["webill", "seed-demo"])
        self.assertEqual(first.exit_code, 0, first.output)
        self.assertIn("Items created: 3", first.output)
        self.assertEqual(self._counts(), (3, 3, 3))

        second = self.runner.invoke(args=["webill", "seed-demo"])
        self.assertEqual(second.exit_code, 0, second.output)
        self.assertIn("Items created: 0", second.output)
        self.assertEqual(self._counts(), (3, 3, 3))

    def test_seeded_items_support_ledger_writes(self):
        self.runner.invoke(args=["webill", "seed-demo"])
        laptop = db.session.query(Item).filter_by(sku="LAPTOP-001").one()
        buyer = db.session.query(Party).filter_by(email="john.doe@example.com").one()

        sale = ledger_service.create_transaction({
            "type": "SALE",
            "customer_id": buyer.id,
            "items": [{"item_id": laptop.id, "quantity": 2, "unit_price": "1299.99"}],
        })

        self.assertEqual(str(sale.total_amount), "2599.98")
        self.assertEqual(db.session.get(Item, laptop.id).stock_quantity, 48)

    def test_reset_requires_confirmation(self):
        self.runner.invoke(args=["webill", "seed-demo"])
        result = self.runner.invoke(args=["webill", "reset-db"], input="n\n")
        self.assertNotEqual(result.exit_code, 0)
        self.assertEqual(self._counts(), (3, 3, 3))

    def test_reset_drops_data(self):
        self.runner.invoke(args=["webill", "seed-demo"])
        result = self.runner.invoke(args=["webill", "reset-db", "--yes"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self._counts(), (0, 0, 0))

    def test_init_db(self):
        result = self.runner.invoke(args=["webill", "init-db"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Tables created", result.output)


if __name__ == "__main__":
    unittest.main()
