import unittest
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from budgetrule.category_resolver import CategorySuggestion
from budgetrule.errors import SuggestionUnavailable
from budgetrule.main import app, get_store, get_suggester
from budgetrule.storage import TransactionStore

OWNER = {"x-user-id": "owner-1"}


class StubSuggester:
    def __init__(self, suggestion=None, error=None) -> None:
        self.suggestion = suggestion
        self.error = error

    async def suggest_category(self, description, amount):
        if self.error is not None:
            raise self.error
        return self.suggestion


def as_decimal(value) -> Decimal:
    return Decimal(str(value))


class BudgetApiTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        self.store = TransactionStore(engine)
        self.store.create_schema()
        self.suggester = StubSuggester(
            suggestion=CategorySuggestion(category="Needs", explanation="Utilities are essential.")
        )
        app.dependency_overrides[get_store] = lambda: self.store
        app.dependency_overrides[get_suggester] = lambda: self.suggester
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def add_transaction(self, **overrides):
        body = {
            "date": "2024-05-03",
            "description": "Groceries",
            "amount": "100",
            "type": "expense",
            "category": "Needs",
        }
        body.update(overrides)
        return self.client.post("/transactions", json=body, headers=OWNER)

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_missing_identity_is_unauthorized(self) -> None:
        response = self.client.get("/transactions")

        self.assertEqual(response.status_code, 401)

    def test_income_is_stored_as_savings(self) -> None:
        response = self.add_transaction(type="income", category="Wants", description="Salary")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["category"], "Savings")

    def test_income_with_unlisted_category_is_stored_as_savings(self) -> None:
        response = self.add_transaction(type="income", category="Salary", description="Payroll")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["category"], "Savings")

    def test_accepted_suggestion_sets_category(self) -> None:
        response = self.add_transaction(
            category="Wants",
            suggested_category="Needs",
            accept_suggestion=True,
        )

        self.assertEqual(response.json()["category"], "Needs")

    def test_invalid_transaction_is_rejected_without_write(self) -> None:
        response = self.add_transaction(amount="0")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.store.list_transactions("owner-1"), [])

    def test_sub_cent_amount_is_rejected_without_write(self) -> None:
        response = self.add_transaction(amount="0.001")

        self.assertEqual(response.status_code, 400)
        self.assertIn("two decimal places", response.json()["detail"])
        self.assertEqual(self.store.list_transactions("owner-1"), [])

    def test_list_transactions_recent_first(self) -> None:
        self.add_transaction(date="2024-05-01", description="Older")
        self.add_transaction(date="2024-06-01", description="Newer")

        response = self.client.get("/transactions", headers=OWNER)

        self.assertEqual(
            [row["description"] for row in response.json()],
            ["Newer", "Older"],
        )

    def test_suggest_category(self) -> None:
        response = self.client.post(
            "/transactions/suggest-category",
            json={"description": "Electric bill", "amount": "80"},
            headers=OWNER,
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["category"], "Needs")

    def test_suggest_category_requires_description(self) -> None:
        response = self.client.post(
            "/transactions/suggest-category",
            json={"description": " ", "amount": "80"},
            headers=OWNER,
        )

        self.assertEqual(response.status_code, 400)

    def test_suggest_category_unavailable(self) -> None:
        self.suggester = StubSuggester(error=SuggestionUnavailable("down"))

        response = self.client.post(
            "/transactions/suggest-category",
            json={"description": "Electric bill", "amount": "80"},
            headers=OWNER,
        )

        self.assertEqual(response.status_code, 503)

    def test_suggest_category_connection_failure_is_unavailable(self) -> None:
        self.suggester = StubSuggester(error=ConnectionError("reset by peer"))

        response = self.client.post(
            "/transactions/suggest-category",
            json={"description": "Electric bill", "amount": "80"},
            headers=OWNER,
        )

        self.assertEqual(response.status_code, 503)

    def test_summary_reports_totals_and_alerts(self) -> None:
        self.add_transaction(type="income", amount="1000", description="Salary")
        self.add_transaction(category="Needs", amount="600", description="Rent")
        self.add_transaction(category="Wants", amount="100", description="Cinema")

        body = self.client.get("/reports/summary", headers=OWNER).json()

        self.assertEqual(as_decimal(body["total_income"]), Decimal("1000"))
        self.assertEqual(as_decimal(body["total_expenses"]), Decimal("700"))
        self.assertEqual(as_decimal(body["net_savings"]), Decimal("300"))
        self.assertEqual(as_decimal(body["savings_total"]), Decimal("300"))
        self.assertEqual(
            [entry["category"] for entry in body["chart_data"]],
            ["Needs", "Wants", "Savings"],
        )
        self.assertEqual(len(body["alerts"]), 1)
        self.assertEqual(body["alerts"][0]["category"], "Needs")
        self.assertEqual(as_decimal(body["alerts"][0]["actual_percentage"]), Decimal("60"))
        self.assertEqual(body["transaction_count"], 3)

    def test_summary_month_window(self) -> None:
        self.add_transaction(date="2024-04-15", amount="40")
        self.add_transaction(date="2024-05-15", amount="60")

        body = self.client.get("/reports/summary?month=2024-05", headers=OWNER).json()

        self.assertEqual(as_decimal(body["total_expenses"]), Decimal("60"))
        self.assertEqual(body["start_date"], "2024-05-01")
        self.assertEqual(body["end_date"], "2024-05-31")

    def test_summary_rejects_bad_month(self) -> None:
        response = self.client.get("/reports/summary?month=May", headers=OWNER)

        self.assertEqual(response.status_code, 400)

    def test_monthly_report(self) -> None:
        self.add_transaction(date="2024-04-15", type="income", amount="500")
        self.add_transaction(date="2024-05-15", amount="60")

        body = self.client.get("/reports/monthly", headers=OWNER).json()

        self.assertEqual([entry["month"] for entry in body], ["2024-04", "2024-05"])
        self.assertEqual(as_decimal(body[0]["income"]), Decimal("500"))
        self.assertEqual(as_decimal(body[1]["expense"]), Decimal("60"))

    def test_category_breakdown(self) -> None:
        self.add_transaction(type="income", amount="500")
        self.add_transaction(category="Wants", amount="75")

        body = self.client.get("/reports/category-breakdown", headers=OWNER).json()

        self.assertEqual(
            [(entry["category"], as_decimal(entry["total"])) for entry in body],
            [("Needs", Decimal("0")), ("Wants", Decimal("75")), ("Savings", Decimal("0"))],
        )

    def test_configuration_defaults_then_updates(self) -> None:
        initial = self.client.get("/users/me/budget-configuration", headers=OWNER).json()
        self.assertTrue(initial["is_default"])
        self.assertEqual(as_decimal(initial["needs_percentage"]), Decimal("50"))

        response = self.client.put(
            "/users/me/budget-configuration",
            json={"needs_percentage": 60, "wants_percentage": 20, "savings_percentage": 20},
            headers=OWNER,
        )
        self.assertEqual(response.status_code, 200)

        saved = self.client.get("/users/me/budget-configuration", headers=OWNER).json()
        self.assertFalse(saved["is_default"])
        self.assertEqual(as_decimal(saved["needs_percentage"]), Decimal("60"))

    def test_invalid_configuration_keeps_previous(self) -> None:
        self.client.put(
            "/users/me/budget-configuration",
            json={"needs_percentage": 60, "wants_percentage": 20, "savings_percentage": 20},
            headers=OWNER,
        )

        response = self.client.put(
            "/users/me/budget-configuration",
            json={"needs_percentage": 50, "wants_percentage": 30, "savings_percentage": 21},
            headers=OWNER,
        )

        self.assertEqual(response.status_code, 400)
        saved = self.client.get("/users/me/budget-configuration", headers=OWNER).json()
        self.assertEqual(as_decimal(saved["needs_percentage"]), Decimal("60"))

    def test_configuration_with_extra_precision_is_rejected(self) -> None:
        response = self.client.put(
            "/users/me/budget-configuration",
            json={
                "needs_percentage": "33.333",
                "wants_percentage": "33.333",
                "savings_percentage": "33.334",
            },
            headers=OWNER,
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("needs_percentage", response.json()["detail"])
        saved = self.client.get("/users/me/budget-configuration", headers=OWNER).json()
        self.assertTrue(saved["is_default"])

    def test_cent_precision_configuration_round_trips(self) -> None:
        response = self.client.put(
            "/users/me/budget-configuration",
            json={
                "needs_percentage": "33.33",
                "wants_percentage": "33.33",
                "savings_percentage": "33.34",
            },
            headers=OWNER,
        )
        self.assertEqual(response.status_code, 200)

        saved = self.client.get("/users/me/budget-configuration", headers=OWNER).json()
        total = sum(
            as_decimal(saved[name])
            for name in ("needs_percentage", "wants_percentage", "savings_percentage")
        )
        self.assertEqual(total, Decimal("100"))

    def test_custom_configuration_drives_alerts(self) -> None:
        self.client.put(
            "/users/me/budget-configuration",
            json={"needs_percentage": 70, "wants_percentage": 10, "savings_percentage": 20},
            headers=OWNER,
        )
        self.add_transaction(type="income", amount="1000")
        self.add_transaction(category="Needs", amount="600")
        self.add_transaction(category="Wants", amount="150")

        body = self.client.get("/reports/summary", headers=OWNER).json()

        self.assertEqual([alert["category"] for alert in body["alerts"]], ["Wants"])


if __name__ == "__main__":
    unittest.main()
