"""
Tests 301-340: Navigation filtering and display (redaction) rules.

All rules are pure functions of a session snapshot and a record.
"""
import pytest

from scn_console.navigation import NAVIGATION, build_navigation, nav_entry
from scn_console.rbac import Module, Role
from scn_console.redaction import (
    PORTAL_CHANNEL_LABEL,
    PORTAL_ONLY_NOTICE,
    REDACTED_DONOR_NAME,
    REDUCED_OPERATIONS_BANNER,
    SAFEGUARDING_DENIED_PANEL,
    access_denied_panel,
    can_view_module,
    effective_donor_safe,
    headcount_widget,
    is_individual_donor_name,
    payment_actions_allowed,
    redact_contact,
    redact_dashboard_stats,
    redact_donation,
    reduced_operations_banner,
    render_message,
    resolve_delivery_type,
)
from scn_console.session import SessionContext


def snap(role="super-admin", **kwargs):
    return SessionContext(role=role, **kwargs).snapshot()


class TestNavigation:

    # =================================================================
    # Tests 301-310: Navigation per role
    # =================================================================

    def test_301_super_admin_sees_everything(self):
        nav = build_navigation(snap())
        assert len(nav["main"]) == len(NAVIGATION)
        assert all(not item["disabled"] for item in nav["main"])

    def test_302_volunteer_navigation(self):
        names = [i["name"] for i in build_navigation(snap("volunteer"))["main"]]
        assert names == ["Dashboard", "Volunteers"]

    def test_303_governance_items_for_every_role(self):
        for role in Role:
            nav = build_navigation(snap(role))
            assert [g["name"] for g in nav["governance"]] == ["Board / Auditor View"]

    def test_304_safeguarding_entry_is_locked_for_restricted_roles(self):
        entry = next(i for i in build_navigation(snap("safeguarding"))["main"] if i["module"] == "safeguarding")
        assert entry["locked"] is True
        assert entry["disabled"] is False
        assert entry["href"] == "/safeguarding"

    def test_305_nav_entry_hidden_without_access(self):
        item = next(i for i in NAVIGATION if i.module is Module.AUDIT)
        assert nav_entry(item, snap("donor")) is None

    def test_306_nav_entry_matches_access_predicate(self):
        for role in Role:
            s = snap(role)
            shown = {i["module"] for i in build_navigation(s)["main"]}
            expected = {i.module.value for i in NAVIGATION if s.can_access_module(i.module)}
            assert shown == expected

    def test_307_navigation_follows_role_switch(self):
        ctx = SessionContext()
        before = build_navigation(ctx.snapshot())
        ctx.set_current_role("procurement")
        after = build_navigation(ctx.snapshot())
        assert len(before["main"]) > len(after["main"])
        assert [i["module"] for i in after["main"]] == ["dashboard", "procurement"]


class TestRedaction:

    # =================================================================
    # Tests 311-320: Module view gate
    # =================================================================

    @pytest.mark.parametrize("role", list(Role))
    def test_311_safeguarding_view_requires_restricted_role(self, role):
        assert can_view_module(Module.SAFEGUARDING, snap(role)) is (
            role in (Role.SUPER_ADMIN, Role.SAFEGUARDING)
        )

    def test_312_denied_panel_text(self):
        assert access_denied_panel(Module.SAFEGUARDING) == SAFEGUARDING_DENIED_PANEL
        assert access_denied_panel(Module.AUDIT)["title"] == "Access Denied"

    def test_313_view_gate_matches_access_for_other_modules(self):
        s = snap("finance")
        assert can_view_module(Module.AUDIT, s)
        assert not can_view_module(Module.HR, s)

    # =================================================================
    # Tests 321-330: Donor-safe view
    # =================================================================

    @pytest.mark.parametrize("name, expected", [
        ("Individual Donor #1042", True),
        ("anonymous", True),
        ("ANONYMOUS GIVER", True),
        ("IndividualDonor-42", True),
        ("Individuals (pooled)", True),
        ("Anonymous#3", True),
        ("Tata Trusts", False),
        ("Azim Premji Foundation", False),
        ("", False),
        (None, False),
    ])
    def test_321_individual_donor_pattern(self, name, expected):
        assert is_individual_donor_name(name) is expected

    def test_322_donor_role_forces_donor_safe(self):
        assert effective_donor_safe(Role.DONOR, False) is True
        assert effective_donor_safe(Role.FINANCE, False) is False
        assert effective_donor_safe(Role.FINANCE, True) is True

    def test_323_donation_redaction(self):
        record = {"id": "d1", "donor_name": "Individual Donor #5", "amount": 10}
        assert redact_donation(record, True)["donor_name"] == REDACTED_DONOR_NAME
        assert redact_donation(record, False)["donor_name"] == "Individual Donor #5"
        assert record["donor_name"] == "Individual Donor #5"

    def test_324_institutional_donor_not_redacted(self):
        record = {"donor_name": "Azim Premji Foundation"}
        assert redact_donation(record, True)["donor_name"] == "Azim Premji Foundation"

    def test_325_contact_redaction_only_for_donor_contacts(self):
        donor = {"name": "Individual Donor #7", "contact_type": "donor"}
        volunteer = {"name": "Individual Volunteer", "contact_type": "volunteer"}
        assert redact_contact(donor, True)["name"] == REDACTED_DONOR_NAME
        assert redact_contact(volunteer, True)["name"] == "Individual Volunteer"

    # =================================================================
    # Tests 331-340: Messaging, reduced ops, dashboard
    # =================================================================

    def test_331_restricted_message_rendered_as_portal_notice(self):
        msg = {"subject": "Incident", "content": "Details", "type": "sms", "restricted": True}
        out = render_message(msg)
        assert out["subject"] == PORTAL_ONLY_NOTICE
        assert out["content"] == PORTAL_ONLY_NOTICE
        assert out["channel"] == PORTAL_CHANNEL_LABEL
        assert msg["subject"] == "Incident"

    def test_332_unrestricted_message_untouched(self):
        msg = {"subject": "Reminder", "content": "Fee due", "type": "email", "restricted": False}
        assert render_message(msg) == msg

    def test_333_delivery_type_forced_to_portal(self):
        normal = snap()
        reduced = snap(reduced_operations_mode=True)
        assert resolve_delivery_type("sms", normal) == "sms"
        assert resolve_delivery_type("sms", normal, restricted=True) == "portal"
        assert resolve_delivery_type("whatsapp", reduced) == "portal"

    def test_334_banner_tracks_flag(self):
        assert reduced_operations_banner(snap()) is None
        banner = reduced_operations_banner(snap(reduced_operations_mode=True))
        assert banner == REDUCED_OPERATIONS_BANNER
        assert "Payments frozen" in banner["message"]

    def test_335_payments_frozen_in_reduced_operations(self):
        assert payment_actions_allowed(snap()) is True
        assert payment_actions_allowed(snap(reduced_operations_mode=True)) is False

    def test_336_headcount_widget_restricted_roles(self):
        stats = {"staff_count": 142, "safeguarding_cases": 3}
        for role in ("super-admin", "safeguarding"):
            widget = headcount_widget(snap(role), stats)
            assert widget["label"] == "Safeguarding Cases"
            assert widget["value"] == 3

    def test_337_headcount_widget_other_roles(self):
        widget = headcount_widget(snap("finance"), {"staff_count": 142, "safeguarding_cases": 3})
        assert widget == {"label": "Active Staff", "value": 142, "note": "Safeguarding data restricted"}

    def test_338_dashboard_stats_hide_safeguarding_count(self):
        stats = {"staff_count": 142, "safeguarding_cases": 3}
        assert "safeguarding_cases" not in redact_dashboard_stats(stats, snap("hr"))
        assert redact_dashboard_stats(stats, snap("safeguarding"))["safeguarding_cases"] == 3
