"""Rules API routes."""

from conftest import ENTERTAINMENT, GROCERIES, SALARY, SHOPPING


async def test_list_rules(client):
    response = await client.get("/api/v1/rules")
    assert response.status_code == 200
    assert [r["pattern"] for r in response.json()] == ["^NETFLIX", "AMAZON", "TESCO"]


async def test_list_rules_filtered_by_category(client):
    response = await client.get("/api/v1/rules", params={"category_id": SHOPPING})
    assert [r["pattern"] for r in response.json()] == ["AMAZON"]


async def test_create_rule(client):
    response = await client.post(
        "/api/v1/rules",
        json={"pattern": "SPOTIFY", "match_type": "contains", "category_id": ENTERTAINMENT},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["confidence"] == 0.85
    assert data["is_active"] is True

    match = await client.post("/api/v1/categorisation/match", json={"description": "SPOTIFY UK"})
    assert match.json()["rule_id"] == data["id"]


async def test_create_duplicate_returns_existing_rule(client, scenario_store):
    response = await client.post(
        "/api/v1/rules",
        json={"pattern": "tesco", "match_type": "exact", "category_id": SHOPPING},
    )
    assert response.status_code == 409
    existing = response.json()["existing_rule"]
    assert existing["pattern"] == "TESCO"
    assert existing["category_id"] == GROCERIES
    assert len(scenario_store.rules) == 3


async def test_create_invalid_regex(client):
    response = await client.post(
        "/api/v1/rules",
        json={"pattern": "([", "match_type": "regex", "category_id": SHOPPING},
    )
    assert response.status_code == 422
    assert response.json()["pattern"] == "(["


async def test_create_rejects_bad_input(client):
    empty = await client.post(
        "/api/v1/rules", json={"pattern": "", "match_type": "contains", "category_id": 1}
    )
    unknown_type = await client.post(
        "/api/v1/rules", json={"pattern": "X", "match_type": "fuzzy", "category_id": 1}
    )
    bad_confidence = await client.post(
        "/api/v1/rules",
        json={"pattern": "X", "match_type": "contains", "category_id": 1, "confidence": 2},
    )
    assert empty.status_code == 422
    assert unknown_type.status_code == 422
    assert bad_confidence.status_code == 422


async def test_check_pattern(client):
    found = await client.post("/api/v1/rules/check", json={"pattern": " Amazon", "match_type": "contains"})
    missing = await client.post("/api/v1/rules/check", json={"pattern": "Amazon", "match_type": "regex"})

    assert found.json()["exists"] is True
    assert found.json()["rule"]["pattern"] == "AMAZON"
    assert missing.json() == {"exists": False, "rule": None}


async def test_test_rule(client, scenario_store):
    scenario_store.add_transaction("UBER *TRIP", category_id=None)
    scenario_store.add_transaction("UBER EATS", category_id=ENTERTAINMENT)

    response = await client.post(
        "/api/v1/rules/test",
        json={"pattern": "UBER", "match_type": "contains", "category_id": ENTERTAINMENT, "limit": 1},
    )

    data = response.json()
    assert response.status_code == 200
    assert data["match_count"] == 2
    assert data["would_change"] == 1
    assert len(data["sample_transactions"]) == 1


async def test_stats(client, scenario_store):
    scenario_store.add_rule("HMRC", "contains", SALARY, is_system=True)
    response = await client.get("/api/v1/rules/stats")
    data = response.json()
    assert data["total_rules"] == 4
    assert data["system_rules"] == 1
    assert data["by_category"][str(SALARY)] == 1


async def test_update_and_delete(client, scenario_store):
    amazon = next(r for r in scenario_store.rules.values() if r.pattern == "AMAZON")

    patched = await client.patch(f"/api/v1/rules/{amazon.id}", json={"confidence": 0.5})
    assert patched.json()["confidence"] == 0.5

    deleted = await client.delete(f"/api/v1/rules/{amazon.id}")
    assert deleted.status_code == 204
    assert (await client.get(f"/api/v1/rules/{amazon.id}")).status_code == 404


async def test_system_rule_cannot_be_deleted(client, scenario_store):
    rule = scenario_store.add_rule("HMRC", "contains", SALARY, is_system=True)
    response = await client.delete(f"/api/v1/rules/{rule.id}")
    assert response.status_code == 403
