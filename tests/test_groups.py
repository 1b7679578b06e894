"""Tests for the experimental group masks."""

from __future__ import annotations

import numpy as np
import pytest

from helper import four_roi_population, make_population

from iplpipe.utils.groups import (
    ALL_GROUPS,
    BASE_GROUPS,
    Condition,
    Genotype,
    GroupKey,
    Layer,
    classify_groups,
    classify_population,
    group_key,
)


def test_sixteen_named_groups():
    names = [key.name for key in ALL_GROUPS]
    assert len(names) == len(set(names)) == 16
    for expected in ("wtCtrl", "koApb", "wtOn", "koOff", "wtOnCtrl", "koOffApb"):
        assert expected in names


def test_group_key_labels_and_lookup():
    key = GroupKey(Genotype.KO, Condition.APB, Layer.OFF)
    assert key.name == "koOffApb"
    assert key.label == "KO OFF APB"
    assert group_key("koOffApb") == key
    with pytest.raises(KeyError):
        group_key("nope")


def test_base_groups_cover_population_once():
    pop = make_population(n_rois=200, seed=3)
    groups = classify_population(pop)
    stacked = np.vstack([groups[key.name] for key in BASE_GROUPS])
    np.testing.assert_array_equal(stacked.sum(axis=0), np.ones(pop.n_rois))


def test_full_groups_are_consistent_with_parts():
    pop = make_population(n_rois=150, seed=5)
    groups = classify_population(pop)
    for g in ("wt", "ko"):
        for layer in ("On", "Off"):
            for cond in ("Ctrl", "Apb"):
                np.testing.assert_array_equal(
                    groups[f"{g}{layer}{cond}"], groups[f"{g}{cond}"] & groups[f"{g}{layer}"]
                )


def test_rois_on_divider_are_neither_on_nor_off():
    depth = np.array([0.2, 0.5, 0.5, 0.8, 0.5])
    genotype = np.array([0, 0, 1, 1, 0])
    condition = np.array([0, 0, 0, 1, 1])
    groups = classify_groups(genotype, condition, depth)

    assert not groups["wtOn"][1] and not groups["wtOff"][1]
    assert not groups["koOn"][2] and not groups["koOff"][2]
    for key in BASE_GROUPS:
        on = f"{key.genotype.name.lower()}On{key.name[2:]}"
        off = f"{key.genotype.name.lower()}Off{key.name[2:]}"
        at_divider = groups[key.name] & (depth == 0.5)
        assert groups[key.name].sum() == groups[on].sum() + groups[off].sum() + at_divider.sum()


def test_custom_divider():
    depth = np.array([0.3, 0.45])
    groups = classify_groups(np.zeros(2), np.zeros(2), depth, divider=0.4)
    np.testing.assert_array_equal(groups["wtOff"], [True, False])
    np.testing.assert_array_equal(groups["wtOn"], [False, True])


def test_without_depth_only_base_groups():
    groups = classify_groups(np.array([0, 1]), np.array([1, 0]))
    assert set(groups) == {"wtCtrl", "wtApb", "koCtrl", "koApb"}
    np.testing.assert_array_equal(groups["wtApb"], [True, False])
    np.testing.assert_array_equal(groups["koCtrl"], [False, True])


def test_scenario_control_groups():
    groups = classify_population(four_roi_population())
    np.testing.assert_array_equal(np.flatnonzero(groups["wtCtrl"]), [0, 1])
    np.testing.assert_array_equal(np.flatnonzero(groups["koCtrl"]), [2, 3])
    assert not groups["wtApb"].any() and not groups["koApb"].any()
