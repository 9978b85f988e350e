"""Property-based tests for requested cluster features."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from pgcluster.exceptions import ValidationError
from pgcluster.models import DEFAULT_NODE_COUNT, ClusterFeatures


@given(node_count=st.integers(min_value=1, max_value=1000))
def test_positive_node_count_is_kept(node_count):
    """Any positive node count is requested as given, whether int or string."""
    assert ClusterFeatures.from_parameters({"node-count": node_count}).node_count == node_count
    assert ClusterFeatures.from_parameters({"node-count": str(node_count)}).node_count == node_count


@given(node_count=st.integers(min_value=-(10**6), max_value=-1))
def test_negative_node_count_is_rejected(node_count):
    """Any negative node count is a validation error, never a silent default."""
    with pytest.raises(ValidationError):
        ClusterFeatures.from_parameters({"node-count": node_count})


@given(node_count=st.sampled_from([None, "", 0, "0"]))
def test_unset_node_count_means_default(node_count):
    """Every spelling of "not given" yields the default node count."""
    assert ClusterFeatures.from_parameters({"node-count": node_count}).node_count == (
        DEFAULT_NODE_COUNT
    )


@given(
    cells=st.lists(
        st.text(
            min_size=1,
            max_size=12,
            alphabet=st.characters(whitelist_categories=("Ll", "Nd"), whitelist_characters="-"),
        ),
        max_size=5,
    )
)
def test_cells_list_and_string_agree(cells):
    """A comma-separated cells string parses to the same list as the list form."""
    from_list = ClusterFeatures.from_parameters({"cells": cells})
    from_string = ClusterFeatures.from_parameters({"cells": ",".join(cells)})

    assert from_list.cell_guids == cells
    assert from_string.cell_guids == cells
