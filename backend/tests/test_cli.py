from merch_admin.models import Order, Product, Stand, User


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "init"])
    assert result.exit_code == 0
    assert "PASS Created user: admin@merch.local" in result.output

    again = runner.invoke(args=["system", "init"])
    assert "already exists" in again.output
    assert db_session.query(User).count() == 3


def test_seed_demo(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "seed-demo"])

    assert result.exit_code == 0, result.output
    assert db_session.query(Product).count() == 5
    assert db_session.query(Stand).count() == 2
    assert db_session.query(Order).count() == 3

    skipped = runner.invoke(args=["system", "seed-demo"])
    assert "skipping demo seed" in skipped.output
