import nox

nox.options.sessions = ["tests"]

PYTHONS = ["3.11", "3.12", "3.13"]
SUITE = "tests/delivery"


def _bootstrap(session: nox.Session) -> None:
    """Poetry install of every extra, then a clean psycopg2 build for this interpreter."""
    session.run("poetry", "install", "--all-extras", external=True)
    session.run("pip", "install", "--force-reinstall", "--no-cache-dir", "psycopg2-binary")


@nox.session(python=PYTHONS)
def tests(session: nox.Session) -> None:
    _bootstrap(session)
    session.run("pytest", "--cov", "--cov-report=term-missing", *session.posargs)


@nox.session(python=PYTHONS[-1])
def domain(session: nox.Session) -> None:
    """Aggregates and pure rules; needs no running infrastructure."""
    _bootstrap(session)
    session.run("pytest", f"{SUITE}/domain", *session.posargs)


@nox.session(python=PYTHONS[-1])
def scenarios(session: nox.Session) -> None:
    _bootstrap(session)
    session.run("pytest", f"{SUITE}/bdd", *session.posargs)


@nox.session(python=PYTHONS[-1])
def api(session: nox.Session) -> None:
    _bootstrap(session)
    session.run("pytest", "-m", "integration", *session.posargs)
