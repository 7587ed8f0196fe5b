"""
Tests for services/campaign_assignments.py.
"""

import sys
import os
from decimal import Decimal
from uuid import uuid4

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from services.campaign_assignments import assign_clipper, get_assignment


class TestAssignClipper:

    def test_creates_assignment_with_zero_earnings(self, db, admin, make_clipper, make_campaign):
        alice = make_clipper("Alice")
        campaign = make_campaign()

        result = assign_clipper(db, admin, campaign.id, alice.id)

        assert result.success is True
        assignment = get_assignment(db, campaign.id, alice.id)
        assert assignment is not None
        assert assignment.total_earned_in_campaign == Decimal("0")

    def test_second_assignment_rejected(self, db, admin, make_clipper, make_campaign):
        alice = make_clipper("Alice")
        campaign = make_campaign()
        assign_clipper(db, admin, campaign.id, alice.id)

        result = assign_clipper(db, admin, campaign.id, alice.id)

        assert result.error == "Clipper is already assigned to this campaign"

    def test_unknown_campaign_or_clipper(self, db, admin, make_clipper, make_campaign):
        alice = make_clipper("Alice")
        campaign = make_campaign()
        assert assign_clipper(db, admin, uuid4(), alice.id).error == "Campaign not found"
        assert assign_clipper(db, admin, campaign.id, uuid4()).error == "Clipper profile not found"

    def test_non_admin(self, db, non_admin, make_clipper, make_campaign):
        alice = make_clipper("Alice")
        campaign = make_campaign()

        result = assign_clipper(db, non_admin, campaign.id, alice.id)

        assert result.error == "Unauthorized"
        assert get_assignment(db, campaign.id, alice.id) is None
