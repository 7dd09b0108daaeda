import nox

PYTHON_VERSION = "3.11"
SOURCE_DIRS = ["api", "common", "packages", "workers"]


@nox.session(python=PYTHON_VERSION)
def tests(session):
    session.install("-e", ".[test]")
    session.run("pytest", "tests/unit", *session.posargs)


@nox.session(python=PYTHON_VERSION)
def lint(session):
    session.install("ruff")
    session.run("ruff", "check", *SOURCE_DIRS, "tests")


@nox.session(python=PYTHON_VERSION)
def format(session):
    session.install("black", "ruff")
    session.run("black", "--check", *SOURCE_DIRS)
    session.run("ruff", "check", ".")


@nox.session(python=PYTHON_VERSION)
def migrations(session):
    """Render the billing migrations as SQL without touching a database."""
    session.install("-e", ".")
    session.run("alembic", "upgrade", "head", "--sql")
