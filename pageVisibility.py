# pageVisibility.py
from statusWorkflow import ClinicStructure

LOGIN_PAGE = "/login"
LANDING_PAGE = "/reception"

# every dashboard page the app serves behind a login
APP_PAGES = ("/reception", "/doctor", "/pharmacy", "/oneman")

PAGE_VISIBILITY = {
    ClinicStructure.FULL_WORKFLOW: ("/reception", "/doctor", "/pharmacy"),
    ClinicStructure.NO_PHARMACY: ("/reception", "/doctor"),
    ClinicStructure.ONE_MAN: ("/reception", "/oneman"),
}

# reachable without a session
PUBLIC_PREFIXES = ("/login", "/signup", "/logout", "/bill/", "/prescription/", "/static/")


def _matches(path, prefix):
    # "/doctor" covers "/doctor" and "/doctor/<id>" but not "/doctors"
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")


def is_public(path):
    return any(_matches(path, p) for p in PUBLIC_PREFIXES)


def is_page_visible(path, structure):
    """Return True when ``path`` is allowed for the clinic's configured structure."""
    if path == "/" or _matches(path, LOGIN_PAGE):
        return True
    try:
        structure = ClinicStructure(structure or ClinicStructure.FULL_WORKFLOW)
    except ValueError:
        structure = ClinicStructure.FULL_WORKFLOW
    return any(_matches(path, p) for p in PAGE_VISIBILITY[structure])


def resolve_redirect(path, structure, authenticated):
    """Where to send a page request, or None to let it through."""
    if is_public(path):
        return None
    if not authenticated:
        return LOGIN_PAGE
    if not is_page_visible(path, structure):
        return LANDING_PAGE
    return None
