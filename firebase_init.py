# firebase_init.py
import os, json, logging
from pathlib import Path

import firebase_admin
from firebase_admin import credentials


def _credentials():
    """
    Service-account lookup order:
      1) FIREBASE_SA_PATH / GOOGLE_APPLICATION_CREDENTIALS file
      2) etc/secrets/firebase-sa.json next to this file
      3) FIREBASE_CREDENTIALS_JSON inline
      4) application default credentials
    """
    sa_path = os.environ.get("FIREBASE_SA_PATH") or os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    if not sa_path:
        sa_path = str(Path(__file__).resolve().parent / "etc" / "secrets" / "firebase-sa.json")

    if Path(sa_path).is_file():
        with open(sa_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return credentials.Certificate(data), data.get("project_id")

    inline = os.environ.get("FIREBASE_CREDENTIALS_JSON")
    if inline:
        data = json.loads(inline)
        return credentials.Certificate(data), data.get("project_id")

    logging.warning(
        "[firebase] no service account found (wanted: %s; cwd=%s); using application default",
        sa_path, os.getcwd(),
    )
    return credentials.ApplicationDefault(), None


def ensure_firebase_app():
    """Initialize Firebase Admin once, with a guaranteed projectId when one is known."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass
    cred, sa_project = _credentials()
    project_id = (
        os.environ.get("FIREBASE_PROJECT_ID")
        or os.environ.get("GOOGLE_CLOUD_PROJECT")
        or os.environ.get("GCLOUD_PROJECT")
        or sa_project
    )
    opts = {"projectId": project_id} if project_id else None
    return firebase_admin.initialize_app(cred, opts)
