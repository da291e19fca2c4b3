import warnings

from sqlalchemy.exc import SAWarning

from modernpos.extensions import db


def test_tables_sort_without_a_foreign_key_cycle(app):
    with warnings.catch_warnings():
        warnings.simplefilter("error", SAWarning)
        names = [t.name for t in db.metadata.sorted_tables]

    assert names.index("carts") < names.index("transactions") < names.index("estimations")


def test_recalled_estimation_key_is_added_after_both_tables(app):
    fk = next(iter(db.metadata.tables["carts"].c.recalled_estimation_id.foreign_keys))

    assert fk.use_alter is True
    assert fk.constraint.name == "fk_carts_recalled_estimation_id"
