"""Keysweep Nox configuration"""
import shutil
import nox

OPENSSH_TESTS = "tests/test_openssh.py"

@nox.session
def lint(session):
    """Lint the package, the tests and their fixtures."""
    session.install("pylint", "nox", ".[test]")
    session.run("pylint", "noxfile.py")
    session.run("pylint", *session.posargs, "src/keysweep")
    session.run("pylint", "--disable=redefined-outer-name", *session.posargs, "tests")

@nox.session
def trailing_whitespace(session):
    """Check for trailing whitespace in tracked files."""
    result = session.run("git", "ls-files", silent=True, external=True)
    files = result.strip().splitlines()

    result = session.run(
        "grep", "-nE", r"\s$", *files, success_codes=[1], silent=True, external=True
    )

    if result:
        session.error("Trailing whitespace found:\n" + result)

@nox.session
def tests(session):
    """Run the tests that use the fake ssh-keygen and ssh-add."""
    session.install(".[test]")
    session.run("pytest", f"--ignore={OPENSSH_TESTS}", *session.posargs, "tests")

@nox.session
def openssh(session):
    """Run the tests against the installed OpenSSH, which must be on PATH."""
    if shutil.which("ssh-keygen") is None:
        session.error("ssh-keygen not found")
    session.install(".[test]")
    session.run("pytest", *session.posargs, OPENSSH_TESTS)
    session.run("keysweep", "--no-agents", "--no-authorized-keys", "-o", "/dev/null")

@nox.session
def build(session):
    """Build and check distributions with build and twine."""
    session.install("build", "twine")
    shutil.rmtree("dist", ignore_errors=True)
    shutil.rmtree("build", ignore_errors=True)
    session.run("python", "-m", "build")
    session.run("python", "-m", "twine", "check", "dist/*")
