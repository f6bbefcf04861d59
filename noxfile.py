import nox

PYTHON_VERSION = "3.11"


@nox.session(python=PYTHON_VERSION)
def tests(session):
    session.install("-e", ".[test]")
    session.run("pytest", "tests/unit", *session.posargs)


@nox.session(python=PYTHON_VERSION)
def lint(session):
    session.install("ruff")
    session.run("ruff", "check", ".")


@nox.session(python=PYTHON_VERSION)
def format(session):
    session.install("black", "ruff")
    session.run("black", "--check", "api", "common", "internal", "packages", "workers")
    session.run("ruff", "check", ".")


@nox.session(python=PYTHON_VERSION)
def migrations(session):
    """Render the migration chain as SQL without a database."""
    session.install("-e", ".")
    session.run("alembic", "upgrade", "head", "--sql")
