"""Tests for the pagination controller."""

import pytest

from docgraph.models import BuildResult, Graph
from docgraph.pagination import PaginationController


def _result(total: int, loaded: int) -> BuildResult:
    return BuildResult(graph=Graph(), total_documents=total, loaded_documents=loaded)


class TestPaginationController:
    """Cap growth and counts."""

    def test_defaults(self):
        controller = PaginationController()
        assert controller.max_nodes == 50
        assert controller.total_documents == 0
        assert not controller.has_more

    def test_load_more_grows_cap(self):
        controller = PaginationController(default_max_nodes=50, increment=25)
        assert controller.request_load_more() == 75
        assert controller.request_load_more() == 100
        assert controller.max_nodes == 100

    def test_apply_tracks_counts(self):
        controller = PaginationController(default_max_nodes=50, increment=25)
        controller.apply(_result(total=120, loaded=50))
        assert controller.has_more
        controller.request_load_more()
        controller.apply(_result(total=120, loaded=75))
        assert controller.loaded_documents == 75
        assert controller.has_more

    def test_no_more_when_everything_loaded(self):
        controller = PaginationController()
        controller.apply(_result(total=30, loaded=30))
        assert not controller.has_more

    def test_reset_restores_default_cap(self):
        controller = PaginationController(default_max_nodes=10, increment=5)
        controller.request_load_more()
        controller.apply(_result(total=40, loaded=15))
        controller.reset()
        assert controller.max_nodes == 10
        assert controller.total_documents == 0
        assert controller.loaded_documents == 0

    def test_set_max_nodes_is_clamped(self):
        controller = PaginationController()
        controller.set_max_nodes(0)
        assert controller.max_nodes == 1

    @pytest.mark.parametrize("default_max_nodes, increment", [(0, 25), (50, 0)])
    def test_invalid_configuration(self, default_max_nodes: int, increment: int):
        with pytest.raises(ValueError):
            PaginationController(default_max_nodes, increment)
