import pytest

from vocab_automation.errors import ValidationError
from vocab_automation.orchestrator.library.grading import calculate_grading_scale


def test_scale_for_23_points() -> None:
    scale = calculate_grading_scale(23)
    assert scale.total_points == 23
    assert [r.grade for r in scale.ranges] == ["1", "2", "3", "4", "5", "6"]

    best = scale.for_grade("1")
    assert (best.min_points, best.max_points) == (21, 23)
    assert best.display == "21-23"

    worst = scale.for_grade("6")
    assert (worst.min_points, worst.max_points) == (0, 3)


def test_scale_for_100_points_matches_percentages() -> None:
    scale = calculate_grading_scale(100)
    assert scale.rows() == [
        ("1", "87-100"),
        ("2", "73-86"),
        ("3", "59-72"),
        ("4", "45-58"),
        ("5", "18-44"),
        ("6", "0-17"),
    ]


def test_single_point_ranges_render_as_one_number() -> None:
    scale = calculate_grading_scale(1)
    # 87% of 1 rounds up to 1, 100% of 1 is 1
    assert scale.for_grade("1").display == "1"
    assert scale.for_grade("6").display == "0"


def test_narrow_bands_are_printed_as_computed() -> None:
    scale = calculate_grading_scale(2)
    band = scale.for_grade("2")
    # ceil(1.46) = 2, floor(1.72) = 1: an empty band stays inverted
    assert (band.min_points, band.max_points) == (2, 1)


@pytest.mark.parametrize("bad", [0, -3, 2.5, "10", True, None])
def test_invalid_totals_are_rejected(bad) -> None:
    with pytest.raises(ValidationError):
        calculate_grading_scale(bad)


def test_to_dict_shape() -> None:
    payload = calculate_grading_scale(10).to_dict()
    assert payload["totalPoints"] == 10
    assert payload["ranges"][0] == {
        "grade": "1",
        "label": "sehr gut",
        "minPoints": 9,
        "maxPoints": 10,
        "display": "9-10",
    }
