"""Tests for the probability model: proves range checks and revisioning."""

import pytest

from coldchain.errors import ValidationError
from coldchain.models.network import (
    NODE_IDS,
    ConditionalTable,
    EvidenceNode,
    NetworkModel,
    Priors,
    check_node_id,
    check_probability,
)


class TestRangeChecks:
    @pytest.mark.parametrize("value", [0, 1, 50, 100])
    def test_valid_probability(self, value: int) -> None:
        assert check_probability(value, "p") == value

    @pytest.mark.parametrize("value", [-1, 101, 1000])
    def test_out_of_range_probability(self, value: int) -> None:
        with pytest.raises(ValidationError):
            check_probability(value, "p")

    @pytest.mark.parametrize("value", [0.5, "50", True, None])
    def test_non_integer_probability(self, value: object) -> None:
        with pytest.raises(ValidationError):
            check_probability(value, "p")

    def test_node_ids(self) -> None:
        assert NODE_IDS == (1, 2, 3, 4, 5)
        assert check_node_id(EvidenceNode.SEAL) == 2

    @pytest.mark.parametrize("node_id", [0, 6, -1, True, "1"])
    def test_unknown_node(self, node_id: object) -> None:
        with pytest.raises(ValidationError):
            check_node_id(node_id)


class TestPriors:
    def test_terms(self) -> None:
        priors = Priors(90, 80)
        assert priors.term(False, False) == 10 * 20
        assert priors.term(False, True) == 10 * 80
        assert priors.term(True, False) == 90 * 20
        assert priors.term(True, True) == 90 * 80

    def test_out_of_range_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Priors(101, 50)


class TestConditionalTable:
    def test_probability_order(self) -> None:
        table = ConditionalTable(20, 80, 80, 99)
        assert table.probability(False, False) == 20
        assert table.probability(False, True) == 80
        assert table.probability(True, False) == 80
        assert table.probability(True, True) == 99

    def test_likelihood_of_false_observation(self) -> None:
        table = ConditionalTable(70, 10, 70, 10)
        assert table.likelihood(False, False, True) == 90
        assert table.likelihood(True, False, True) == 10

    def test_invalid_entry_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ConditionalTable(0, 0, 0, 101)


class TestNetworkModel:
    def test_empty_model_lists_everything_missing(self) -> None:
        model = NetworkModel()
        assert model.missing_parameters() == [
            "priors", "cpt[1]", "cpt[2]", "cpt[3]", "cpt[4]", "cpt[5]",
        ]
        assert not model.is_complete

    def test_updates_bump_revision(self) -> None:
        model = NetworkModel()
        model = model.with_priors(Priors(90, 90))
        assert model.revision == 1
        model = model.with_cpt(1, ConditionalTable(5, 5, 98, 98))
        assert model.revision == 2
        model = model.with_cpt(1, ConditionalTable(6, 6, 97, 97))
        assert model.revision == 3
        assert model.cpts[1].as_tuple() == (6, 6, 97, 97)

    def test_updates_do_not_mutate_original(self) -> None:
        base = NetworkModel().with_priors(Priors(90, 90))
        base.with_cpt(2, ConditionalTable(1, 99, 1, 99))
        assert 2 not in base.cpts

    def test_complete_model(self) -> None:
        model = NetworkModel().with_priors(Priors(90, 90))
        for node_id in NODE_IDS:
            model = model.with_cpt(node_id, ConditionalTable(50, 50, 50, 50))
        assert model.is_complete
        assert model.to_dict()["cpts"]["5"] == [50, 50, 50, 50]

    def test_invalid_node_rejected(self) -> None:
        with pytest.raises(ValidationError):
            NetworkModel().with_cpt(6, ConditionalTable(50, 50, 50, 50))
