# tests/test_categories.py
import pytest

from libs.categories import detect_provider_category, resolve_category_id, suggest_category
from libs.models import CategoryRef, Direction, PastTransaction


@pytest.fixture
def categories() -> list[CategoryRef]:
    return [
        CategoryRef(id="cat-food", name="Alimentation", type="Expense"),
        CategoryRef(id="cat-shop", name="Shopping", type="Expense"),
        CategoryRef(id="cat-transport", name="Transport", type="Expense"),
        CategoryRef(id="cat-misc", name="Divers", type="Expense"),
        CategoryRef(id="cat-momo", name="Mobile Money", type="Expense"),
        CategoryRef(id="cat-salary", name="Salaire", type="Income"),
    ]


def test_habit_memory_outranks_keywords(categories):
    history = [PastTransaction(label="Carrefour", category_id="cat-shop")]

    # "carrefour" есть в словаре → Alimentation, но пользователь раньше выбрал Shopping
    assert suggest_category("Carrefour", categories, history, Direction.EXPENSE) == "cat-shop"
    assert suggest_category("  CARREFOUR ", categories, history, Direction.EXPENSE) == "cat-shop"


def test_keyword_dictionary(categories):
    assert suggest_category("Carrefour", categories, [], Direction.EXPENSE) == "cat-food"
    assert suggest_category("Taxi gare routière", categories, [], Direction.EXPENSE) == "cat-transport"


def test_first_history_match_wins(categories):
    history = [
        PastTransaction(label="taxi", category_id="cat-misc"),
        PastTransaction(label="Taxi", category_id="cat-transport"),
    ]
    assert suggest_category("Taxi", categories, history, Direction.EXPENSE) == "cat-misc"


def test_direction_filters_candidates(categories):
    history = [PastTransaction(label="Virement", category_id="cat-salary")]

    assert suggest_category("Virement", categories, history, Direction.INCOME) == "cat-salary"
    # Income-категория не годится для расхода; "virement" → Salaire тоже Income
    assert suggest_category("Virement", categories, history, Direction.EXPENSE) is None


def test_loan_repayment_is_not_telecom(categories):
    categories = [*categories, CategoryRef(id="cat-telecom", name="Telecom", type="Expense")]

    assert suggest_category("Remboursement crédit", categories, [], Direction.EXPENSE) is None
    assert suggest_category("Forfait internet", categories, [], Direction.EXPENSE) == "cat-telecom"


def test_no_suggestion(categories):
    assert suggest_category("", categories, [], Direction.EXPENSE) is None
    assert suggest_category("Carrefour", [], [], Direction.EXPENSE) is None
    assert suggest_category("xyz", categories, [], Direction.EXPENSE) is None


def test_resolve_uses_hint_then_fallback(categories):
    assert (
        resolve_category_id("Envoi à Jean", categories, [], Direction.EXPENSE, hint="Mobile Money")
        == "cat-momo"
    )
    assert resolve_category_id("xyz", categories, [], Direction.EXPENSE) == "cat-misc"
    assert resolve_category_id("xyz", categories, [], Direction.INCOME) is None


@pytest.mark.parametrize(
    "name, details, expected",
    [
        ("SEEG", None, "Électricité"),
        ("SEEG", "Consommation 150 kWh", "Électricité"),
        ("SEEG", "Facture eau", "Logement"),
        ("Gabon Telecom", None, "Telecom"),
        ("CANAL+", None, "Loisirs"),
        ("Boutique Inconnue", None, "Divers"),
    ],
)
def test_detect_provider_category(name, details, expected):
    assert detect_provider_category(name, details) == expected
