"""
Tests for cleaner assignments and routes
"""
import uuid

import pytest

from conftest import make_company, make_point, make_user
from feedbackatm.models.models import Route, RoutePoint, UserRole
from feedbackatm.services.assignment_service import assign_points_to_cleaner, assigned_point_ids, list_assigned_points
from feedbackatm.services.common import parse_ids
from feedbackatm.services.errors import NotFound, ValidationFailed
from feedbackatm.services.route_service import RouteScope, create_route, delete_route, list_routes, update_route


@pytest.fixture
def setup(db):
    company = make_company(db, "Acme")
    cleaner = make_user(db, "carol", company=company)
    points = [make_point(db, company, name) for name in ("A", "B", "C")]
    return company, cleaner, points


def route_point_ids(db, route_id):
    rows = (
        db.query(RoutePoint.service_point_id)
        .filter(RoutePoint.route_id == route_id)
        .order_by(RoutePoint.position)
        .all()
    )
    return [r[0] for r in rows]


class TestAssignPoints:
    """Tests for direct assignment replacement"""

    def test_replacement_is_total(self, db, setup):
        """Test that a second assignment replaces rather than merges"""
        _, carol, (a, b, c) = setup
        assign_points_to_cleaner(db, carol.id, [a.id, b.id])
        assign_points_to_cleaner(db, carol.id, [b.id, c.id])
        assert set(assigned_point_ids(db, carol.id)) == {b.id, c.id}

    def test_empty_set_clears(self, db, setup):
        """Test that assigning nothing removes every assignment"""
        _, carol, (a, _, _) = setup
        assign_points_to_cleaner(db, carol.id, [a.id])
        assign_points_to_cleaner(db, carol.id, [])
        assert assigned_point_ids(db, carol.id) == []

    def test_duplicates_are_suppressed(self, db, setup):
        """Test that repeated ids produce a single assignment"""
        _, carol, (a, _, _) = setup
        user = assign_points_to_cleaner(db, carol.id, [a.id, a.id])
        assert len(user.assignments) == 1

    def test_rejects_non_cleaner(self, db, setup):
        """Test that only cleaners can receive points"""
        company, _, (a, _, _) = setup
        manager = make_user(db, "mgr", role=UserRole.MANAGER, company=company)
        with pytest.raises(ValidationFailed):
            assign_points_to_cleaner(db, manager.id, [a.id])

    def test_rejects_unknown_user(self, db, setup):
        """Test that a missing user is reported as not found"""
        _, _, (a, _, _) = setup
        with pytest.raises(NotFound):
            assign_points_to_cleaner(db, uuid.uuid4(), [a.id])

    def test_rejects_unknown_point(self, db, setup):
        """Test that unknown point ids fail without touching existing assignments"""
        _, carol, (a, _, _) = setup
        assign_points_to_cleaner(db, carol.id, [a.id])
        with pytest.raises(ValidationFailed):
            assign_points_to_cleaner(db, carol.id, [uuid.uuid4()])
        assert assigned_point_ids(db, carol.id) == [a.id]

    def test_list_includes_company(self, db, setup):
        """Test that listed points carry their company"""
        company, carol, (a, b, _) = setup
        assign_points_to_cleaner(db, carol.id, [b.id, a.id])
        points = list_assigned_points(db, carol.id)
        assert [p.name for p in points] == ["A", "B"]
        assert points[0].company.name == company.name

    def test_parse_ids_rejects_garbage(self):
        """Test that malformed ids are a validation error"""
        with pytest.raises(ValidationFailed):
            parse_ids(["not-a-uuid"], "service point id")


class TestRoutes:
    """Tests for route management and assignment sync"""

    def test_create_syncs_assignments(self, db, setup):
        """Test that creating a route sets the cleaner's assignments to its points"""
        company, carol, (a, b, c) = setup
        assign_points_to_cleaner(db, carol.id, [c.id])
        route = create_route(db, RouteScope(company.id), " Morning ", carol.id, [b.id, a.id])
        assert route.name == "Morning"
        assert route.order_num == 1
        assert [rp.service_point_id for rp in route.route_points] == [b.id, a.id]
        assert set(assigned_point_ids(db, carol.id)) == {a.id, b.id}

    def test_sync_is_one_directional(self, db, setup):
        """Test that direct assignment edits leave route points alone"""
        company, carol, (a, b, _) = setup
        route = create_route(db, RouteScope(company.id), "R1", carol.id, [a.id, b.id])
        assign_points_to_cleaner(db, carol.id, [a.id])
        assert route_point_ids(db, route.id) == [a.id, b.id]
        assert assigned_point_ids(db, carol.id) == [a.id]

    def test_delete_preserves_assignments(self, db, setup):
        """Test that deleting a route keeps the cleaner's assignments"""
        company, carol, (a, b, _) = setup
        route = create_route(db, RouteScope(company.id), "R", carol.id, [a.id, b.id])
        delete_route(db, route.id, RouteScope(company.id))
        assert db.query(Route).count() == 0
        assert db.query(RoutePoint).count() == 0
        assert set(assigned_point_ids(db, carol.id)) == {a.id, b.id}

    def test_order_numbers_increment_per_scope(self, db, setup):
        """Test that order numbers count up within a company and separately for no company"""
        company, carol, (a, _, _) = setup
        scope = RouteScope(company.id)
        assert create_route(db, scope, "R1", carol.id, [a.id]).order_num == 1
        assert create_route(db, scope, "R2", carol.id, [a.id]).order_num == 2
        assert create_route(db, RouteScope(None, unrestricted=True), "R3", carol.id, [a.id]).order_num == 1

    def test_points_may_span_companies(self, db, setup):
        """Test that a route accepts points from another company"""
        company, carol, (a, _, _) = setup
        other = make_company(db, "Other")
        q = make_point(db, other, "Q")
        route = create_route(db, RouteScope(company.id), "Mixed", carol.id, [a.id, q.id])
        assert len(route.route_points) == 2

    def test_create_validation(self, db, setup):
        """Test that blank names, non-cleaners and unknown points are rejected"""
        company, carol, (a, _, _) = setup
        manager = make_user(db, "mgr", role=UserRole.MANAGER, company=company)
        scope = RouteScope(company.id)
        with pytest.raises(ValidationFailed):
            create_route(db, scope, "   ", carol.id, [a.id])
        with pytest.raises(NotFound):
            create_route(db, scope, "R", manager.id, [a.id])
        with pytest.raises(ValidationFailed):
            create_route(db, scope, "R", carol.id, [uuid.uuid4()])
        assert db.query(Route).count() == 0

    def test_update_points_resyncs_assignments(self, db, setup):
        """Test that a new point list rewrites positions and assignments"""
        company, carol, (a, b, c) = setup
        scope = RouteScope(company.id)
        route = create_route(db, scope, "R", carol.id, [a.id, b.id])
        missing = uuid.uuid4()
        updated = update_route(db, route.id, scope, point_ids=[c.id, missing, a.id])
        assert [rp.service_point_id for rp in updated.route_points] == [c.id, a.id]
        assert [rp.position for rp in updated.route_points] == [0, 1]
        assert set(assigned_point_ids(db, carol.id)) == {a.id, c.id}

    def test_update_cleaner_moves_assignments_to_new_cleaner(self, db, setup):
        """Test that changing the cleaner syncs the new cleaner's assignments"""
        company, carol, (a, b, _) = setup
        dave = make_user(db, "dave", company=company)
        scope = RouteScope(company.id)
        route = create_route(db, scope, "R", carol.id, [a.id])
        update_route(db, route.id, scope, name="Renamed", cleaner_id=dave.id, point_ids=[b.id])
        assert assigned_point_ids(db, dave.id) == [b.id]
        assert assigned_point_ids(db, carol.id) == [a.id]

    def test_scope_hides_other_company_routes(self, db, setup):
        """Test that company scopes only see their own routes"""
        company, carol, (a, _, _) = setup
        other = make_company(db, "Other")
        route = create_route(db, RouteScope(company.id), "R", carol.id, [a.id])
        assert list_routes(db, RouteScope(other.id)) == []
        assert len(list_routes(db, RouteScope(None, unrestricted=True))) == 1
        with pytest.raises(NotFound):
            update_route(db, route.id, RouteScope(other.id), name="x")
        with pytest.raises(NotFound):
            delete_route(db, route.id, RouteScope(other.id))
