"""
HTTP surface: routes, request validation and error-to-status mapping.

The app is built without its lifespan; app.state carries in-memory
collaborators and the request-scoped repository/clock are overridden.
"""
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from facility_helpdesk.escalation.application.services import RuleTable
from facility_helpdesk.escalation.interfaces.controllers import (
    get_clock, get_ticket_repository
)
from facility_helpdesk.main import create_app

from tests.conftest import T0

RULES_PAYLOAD = {
    "rules": [
        {
            "category": "Electrical", "sub_category": "Lighting",
            "issue": "Tube light not working", "priority": "P2",
            "tiers": {
                "L0": {"response_time_minutes": 30, "resolution_time_minutes": 240},
                "L1": {"response_time_minutes": 60, "resolution_time_minutes": 480,
                       "assignee": "Shift Engineer"},
            },
        },
        {
            "category": "Electrical", "sub_category": "Lighting", "priority": "P2",
            "tiers": {"L0": {"response_time_minutes": 45, "resolution_time_minutes": 300}},
        },
        {
            "category": "Plumbing", "sub_category": "Leakage", "issue": "Tap leaking",
            "tiers": {"L0": {"response_time_minutes": 30, "resolution_time_minutes": 120}},
        },
    ]
}

TICKET = {
    "id": "HD-1001",
    "category": "Electrical",
    "sub_category": "Lighting",
    "issue": "Tube light not working",
    "priority": "P2",
    "reported_by": "front.desk",
}


def _dt(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest.fixture()
def client(rule_repo, policy_provider, notifier, ticket_repo, clock):
    app = create_app()
    app.state.rule_table = RuleTable(rule_repo, clock)
    app.state.policy_manager = policy_provider
    app.state.notifier = notifier
    app.dependency_overrides[get_ticket_repository] = lambda: ticket_repo
    app.dependency_overrides[get_clock] = lambda: clock
    return TestClient(app)


@pytest.fixture()
def seeded(client):
    response = client.put("/escalation/rules", json=RULES_PAYLOAD)
    assert response.status_code == 200
    return client


@pytest.fixture()
def ticket(seeded):
    response = seeded.post("/helpdesk/tickets", json=TICKET)
    assert response.status_code == 201
    return response.json()


# ═══════════════════════════════════════════════════════════════════════════
#  RULES
# ═══════════════════════════════════════════════════════════════════════════

class TestRuleRoutes:
    def test_replace_rules(self, client):
        response = client.put("/escalation/rules", json=RULES_PAYLOAD)
        assert response.status_code == 200
        assert response.json() == {"version": 1, "total_rules": 3}
        assert "X-Correlation-ID" in response.headers

    def test_correlation_id_is_echoed(self, client):
        response = client.get("/escalation/categories", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"

    def test_cascading_lookups(self, seeded):
        assert seeded.get("/escalation/categories").json() == ["Electrical", "Plumbing"]
        assert seeded.get("/escalation/subcategories/electrical").json() == ["Lighting"]
        assert seeded.get("/escalation/issues/Electrical/Lighting").json() == ["Tube light not working"]
        assert seeded.get("/escalation/priorities", params={"category": "Plumbing"}).json() == ["P3"]

    def test_resolve_with_wildcard_fallback(self, seeded):
        response = seeded.get("/escalation/rule", params={
            "category": "electrical", "subcategory": " Lighting", "issue": "Flicker", "priority": "P2"
        })
        assert response.status_code == 200
        body = response.json()
        assert body["issue"] is None
        assert body["escalation_path"][0]["resolution_time_display"] == "5h"

    def test_resolve_not_found(self, seeded):
        response = seeded.get("/escalation/rule", params={"category": "Carpentry"})
        assert response.status_code == 404
        body = response.json()
        assert body["error_type"] == "RuleNotFoundException"
        assert body["details"]["priority"] == "P3"

    def test_duplicate_rules_rejected_and_old_set_kept(self, seeded):
        payload = {"rules": RULES_PAYLOAD["rules"] + [
            {"category": "ELECTRICAL", "sub_category": "lighting", "priority": "p2"}
        ]}
        response = seeded.put("/escalation/rules", json=payload)
        assert response.status_code == 422
        assert response.json()["error_type"] == "ValidationException"

        stats = seeded.get("/escalation/stats").json()
        assert stats["rule_set_version"] == 1
        assert stats["total_rules"] == 3

    def test_issue_without_subcategory_rejected(self, client):
        payload = {"rules": [{"category": "Civil", "issue": "Crack in wall"}]}
        assert client.put("/escalation/rules", json=payload).status_code == 422

    def test_empty_rule_set_rejected(self, client):
        assert client.put("/escalation/rules", json={"rules": []}).status_code == 422

    def test_search_and_stats(self, seeded):
        assert len(seeded.get("/escalation/rules/search", params={"q": "light"}).json()) == 2

        stats = seeded.get("/escalation/stats").json()
        assert stats["unique_categories"] == 2
        assert stats["unique_priorities"] == ["P2", "P3"]


# ═══════════════════════════════════════════════════════════════════════════
#  TICKETS
# ═══════════════════════════════════════════════════════════════════════════

class TestTicketRoutes:
    def test_open_ticket(self, ticket):
        assert ticket["status"] == "Open"
        assert ticket["current_level"] == "L0"
        assert ticket["allowed_transitions"] == ["WIP"]
        assert _dt(ticket["next_escalation_time"]) == T0 + timedelta(minutes=240)

    def test_duplicate_ticket(self, seeded, ticket):
        assert seeded.post("/helpdesk/tickets", json=TICKET).status_code == 409

    def test_invalid_priority(self, seeded):
        response = seeded.post("/helpdesk/tickets", json={**TICKET, "priority": "P9"})
        assert response.status_code == 422

    def test_unknown_ticket(self, seeded):
        response = seeded.get("/helpdesk/tickets/HD-404")
        assert response.status_code == 404
        assert response.json()["error_type"] == "ResourceNotFoundException"

    def test_status_workflow(self, seeded, ticket):
        response = seeded.post("/helpdesk/tickets/HD-1001/transition",
                               json={"to_status": "Resolved", "changed_by": "tech"})
        assert response.status_code == 409
        assert response.json()["details"]["allowed"] == ["WIP"]

        response = seeded.post("/helpdesk/tickets/HD-1001/transition",
                               json={"to_status": "WIP", "changed_by": "tech"})
        assert response.status_code == 200
        assert response.json()["status"] == "WIP"

        response = seeded.post("/helpdesk/tickets/HD-1001/sub-status",
                               json={"sub_status": "denied", "changed_by": "supervisor"})
        assert response.json()["sub_status"] == "denied"

        response = seeded.post("/helpdesk/tickets/HD-1001/transition",
                               json={"to_status": "Resolved", "changed_by": "tech"})
        body = response.json()
        assert body["status"] == "Resolved"
        assert body["next_escalation_time"] is None
        assert [c["status"] for c in body["status_history"]] == ["Open", "WIP", "WIP", "Resolved"]

    def test_unknown_status_value(self, seeded, ticket):
        response = seeded.post("/helpdesk/tickets/HD-1001/transition",
                               json={"to_status": "Closed", "changed_by": "tech"})
        assert response.status_code == 422

    def test_sub_status_requires_wip(self, seeded, ticket):
        response = seeded.post("/helpdesk/tickets/HD-1001/sub-status",
                               json={"sub_status": "pushed_back", "changed_by": "supervisor"})
        assert response.status_code == 409

    def test_list_tickets_by_status(self, seeded, ticket):
        assert len(seeded.get("/helpdesk/tickets").json()) == 1
        assert seeded.get("/helpdesk/tickets", params={"status": "WIP"}).json() == []


# ═══════════════════════════════════════════════════════════════════════════
#  ESCALATION
# ═══════════════════════════════════════════════════════════════════════════

class TestEscalationRoutes:
    def test_escalate_to_next_tier_without_body(self, seeded, ticket, notifier):
        response = seeded.post("/helpdesk/tickets/HD-1001/escalate")
        assert response.status_code == 200
        body = response.json()
        assert body["current_level"] == "L1"
        assert body["escalation_chain"][1]["assignee"] == "Shift Engineer"
        assert len(notifier.sent) == 1

    def test_escalate_explicit_levels(self, seeded, ticket):
        response = seeded.post("/helpdesk/tickets/HD-1001/escalate", json={
            "from_level": "L0", "to_level": "L1", "reason": "Tenant complaint"
        })
        assert response.json()["escalation_chain"][1]["reason"] == "Tenant complaint"

        response = seeded.post("/helpdesk/tickets/HD-1001/escalate",
                               json={"from_level": "L0", "to_level": "L1"})
        assert response.status_code == 409

    def test_escalate_levels_must_come_together(self, seeded, ticket):
        response = seeded.post("/helpdesk/tickets/HD-1001/escalate", json={"from_level": "L0"})
        assert response.status_code == 422

    def test_set_priority(self, seeded, ticket, clock):
        clock.advance(10)
        response = seeded.post("/helpdesk/tickets/HD-1001/priority",
                               json={"priority": "P1", "set_by": "supervisor"})
        assert response.status_code == 200
        body = response.json()
        assert body["priority_manually_set"] is True
        assert _dt(body["next_escalation_time"]) == T0 + timedelta(minutes=120)

        response = seeded.post("/helpdesk/tickets/HD-1001/priority",
                               json={"priority": "urgent", "set_by": "supervisor"})
        assert response.status_code == 422

    def test_sweep(self, seeded, ticket, clock):
        assert seeded.get("/helpdesk/escalations/due").json() == []

        clock.advance(241)
        assert [t["id"] for t in seeded.get("/helpdesk/escalations/due").json()] == ["HD-1001"]
        assert seeded.post("/helpdesk/escalations/process").json() == {"escalated": 1, "errors": 0}
        assert seeded.post("/helpdesk/escalations/process").json() == {"escalated": 0, "errors": 0}

        chain = seeded.get("/helpdesk/tickets/HD-1001/escalation-chain").json()
        assert [entry["level"] for entry in chain] == ["L0", "L1"]

    def test_escalation_status(self, seeded, ticket, clock):
        clock.advance(250)
        body = seeded.get("/helpdesk/tickets/HD-1001/escalation-status").json()
        assert body["should_escalate"] is True
        assert body["minutes_remaining"] == -10
        assert body["next_level"] == "L1"


class TestHealth:
    def test_health(self, seeded):
        body = seeded.get("/health").json()
        assert body["status"] == "healthy"
        assert body["checks"]["rule_table"] == "version 1 (3 rules)"
        assert body["checks"]["escalation_scheduler"] == "stopped"

    def test_root(self, client):
        assert client.get("/").json()["modules"]["helpdesk"] == {"prefix": "/helpdesk"}
