"""Dashboard trees."""
from reporthub.services import nested


def test_admin_tree_places_every_report(db, seed, as_principal):
    admin = seed.admin()
    partner = seed.partner(admin, name="Acme")
    customer = seed.customer(partner, name="Harbor")
    cu = seed.unit(customer=customer, name="Crane")
    pu = seed.unit(partner=partner, name="Yard")
    seed.report(partner, number="WO1")
    seed.report(partner, customer=customer, number="WO2")
    seed.report(partner, customer=customer, unit=cu, number="WO3")
    seed.report(partner, unit=pu, number="WO4")
    seed.partner(seed.admin("Admin B"), name="Elsewhere")

    tree = nested.admin_nested_tree(db, as_principal(admin))

    assert [p["name"] for p in tree] == ["Acme"]
    node = tree[0]
    assert [r["report_number"] for r in node["reports"]] == ["WO1"]
    assert [u["unit_name"] for u in node["units"]] == ["Yard"]
    assert [r["report_number"] for r in node["units"][0]["reports"]] == ["WO4"]
    harbor = node["customers"][0]
    assert [r["report_number"] for r in harbor["reports"]] == ["WO2"]
    assert [r["report_number"] for r in harbor["units"][0]["reports"]] == ["WO3"]


def test_partner_tree_is_single_partner(db, seed, as_principal):
    admin = seed.admin()
    partner = seed.partner(admin, name="Mine")
    seed.partner(admin, name="Sibling")
    tree = nested.partner_nested_tree(db, as_principal(partner))
    assert [p["id"] for p in tree] == [str(partner.id)]


def test_customers_nested_sorted_by_name(db, seed, as_principal):
    admin = seed.admin()
    partner = seed.partner(admin)
    seed.customer(partner, name="zeta")
    seed.customer(partner, name="Alpha")
    rows = nested.customers_nested(db, as_principal(admin))
    assert [c["name"] for c in rows] == ["Alpha", "zeta"]
    assert rows[0]["partner_id"] == str(partner.id)


def test_empty_admin(db, seed, as_principal):
    assert nested.admin_nested_tree(db, as_principal(seed.admin())) == []
