import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from helpdesk.dashboard import build_dashboard, format_action, merge_activity, time_ago
from helpdesk.history import apply_ticket_changes
from helpdesk.models import TicketCommentModel

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def _entry(kind, minutes_ago):
    return {"type": kind, "id": f"{kind}-{minutes_ago}", "timestamp": NOW - timedelta(minutes=minutes_ago)}


def test_merge_interleaves_feeds_newest_first():
    histories = [_entry("history", m) for m in (1, 4, 6)]
    comments = [_entry("comment", m) for m in (2, 3, 5)]

    merged = merge_activity(histories, comments)
    assert [e["id"] for e in merged] == [
        "history-1", "comment-2", "comment-3", "history-4", "comment-5", "history-6",
    ]


def test_merge_keeps_only_the_newest_ten():
    histories = [_entry("history", m) for m in range(0, 20, 2)]
    comments = [_entry("comment", m) for m in range(1, 21, 2)]

    merged = merge_activity(histories, comments)
    assert len(merged) == 10
    assert merged[0]["id"] == "history-0"
    assert merged[-1]["id"] == "comment-9"


def test_format_action_phrases():
    def h(column, new=None):
        return SimpleNamespace(column_changed=column, new_value=new)

    assert format_action(h("status", "closed")) == "changed status to Closed"
    assert format_action(h("priority", "high")) == "changed priority to High"
    assert format_action(h("assignee_id", "7")) == "reassigned ticket"
    assert format_action(h("company_id", "2")) == "updated company id"


def test_time_ago():
    assert time_ago(NOW - timedelta(seconds=30), NOW) == "30 seconds ago"
    assert time_ago(NOW - timedelta(minutes=1), NOW) == "1 minute ago"
    assert time_ago(NOW - timedelta(hours=5), NOW) == "5 hours ago"
    assert time_ago(NOW - timedelta(days=2), NOW) == "2 days ago"
    assert time_ago(NOW + timedelta(days=14), NOW) == "2 weeks from now"
    # Naive values are read as UTC
    assert time_ago(datetime(2024, 6, 15, 11, 0), NOW) == "1 hour ago"
    assert time_ago(None, NOW) == ""


def test_build_dashboard_stats_and_my_tickets(db_session, create_company, create_role, create_user, make_ticket):
    company = create_company(code="DB")
    me = create_user(roles=[create_role(permissions=["dashboard.view"])], company=company)
    other = create_user(company=company)

    make_ticket(other, company, title="open unassigned")
    make_ticket(other, company, title="mine", assignee_id=me.id, status="in_progress")
    make_ticket(other, company, title="mine closed", assignee_id=me.id, status="closed")
    make_ticket(other, company, title="waiting", assignee_id=other.id, status="waiting")

    data = build_dashboard(db_session, me, now=NOW)
    assert data["stats"] == {"total": 4, "open": 1, "in_progress": 1, "closed": 1, "waiting": 1, "unassigned": 1}
    assert [t["title"] for t in data["my_tickets"]] == ["mine"]
    assert len(data["recent_tickets"]) == 4
    assert data["years"] == [2024, 2023, 2022, 2021]
    assert data["months"][0] == {"id": 1, "name": "January"}
    assert data["filters"] == {"year": None, "month": None}


def test_year_and_month_filters_narrow_stats(db_session, create_company, create_user, make_ticket):
    company = create_company(code="YM")
    me = create_user(company=company)

    old = make_ticket(me, company, title="last year")
    old.created_at = datetime(2023, 3, 10, tzinfo=timezone.utc)
    march = make_ticket(me, company, title="march")
    march.created_at = datetime(2024, 3, 5, tzinfo=timezone.utc)
    may = make_ticket(me, company, title="may")
    may.created_at = datetime(2024, 5, 20, tzinfo=timezone.utc)
    db_session.commit()

    assert build_dashboard(db_session, me, year=2024, now=NOW)["stats"]["total"] == 2
    narrowed = build_dashboard(db_session, me, year=2024, month=3, now=NOW)
    assert narrowed["stats"]["total"] == 1
    assert [t["title"] for t in narrowed["recent_tickets"]] == ["march"]
    assert narrowed["filters"] == {"year": 2024, "month": 3}


def test_activity_feed_merges_history_and_comments(db_session, create_company, create_user, make_ticket):
    company = create_company(code="AF")
    me = create_user(name="Dana", company=company)
    ticket = make_ticket(me, company, title="Feed")

    apply_ticket_changes(db_session, ticket, {"status": "closed"}, me, now=NOW - timedelta(minutes=10))
    db_session.add(
        TicketCommentModel(
            id=str(uuid.uuid4()),
            ticket_id=ticket.id,
            user_id=me.id,
            comment_text="done",
            created_at=NOW - timedelta(minutes=5),
            updated_at=NOW - timedelta(minutes=5),
        )
    )
    apply_ticket_changes(db_session, ticket, {"priority": "high"}, None, now=NOW - timedelta(minutes=1))
    db_session.commit()

    activity = build_dashboard(db_session, me, now=NOW)["activity"]
    assert [(a["type"], a["action"], a["user"]) for a in activity] == [
        ("history", "changed priority to High", "System"),
        ("comment", "commented on", "Dana"),
        ("history", "changed status to Closed", "Dana"),
    ]
    assert activity[1]["comment_text"] == "done"
    assert activity[1]["time"] == "5 minutes ago"
    assert all(a["ticket_key"] == "AF-1" for a in activity)


def test_dashboard_endpoint_validates_filters(client, auth_headers, create_company):
    headers, _ = auth_headers(permissions=["dashboard.view"], company=create_company(code="EP"))

    assert client.get("/api/dashboard/", headers=headers).status_code == 200
    assert client.get("/api/dashboard/", params={"month": 13}, headers=headers).status_code == 422
    assert client.get("/api/dashboard/", params={"year": "soon"}, headers=headers).status_code == 422


def test_dashboard_requires_permission(client, auth_headers):
    headers, _ = auth_headers(permissions=["tickets.view"])
    r = client.get("/api/dashboard/", headers=headers)
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "permission_denied"
