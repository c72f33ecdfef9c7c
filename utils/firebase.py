import os
import json
import firebase_admin
from firebase_admin import credentials, firestore as _firestore
from google.cloud.firestore import Client as FirestoreClient

from utils.logger import logger

def init_firebase() -> None:
    try:
        firebase_admin.get_app()
    except ValueError:
        sa_json = os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON")
        if not sa_json:
            raise RuntimeError("FIREBASE_SERVICE_ACCOUNT_JSON is not set")
        cred = credentials.Certificate(json.loads(sa_json))
        project_id = os.getenv("FIREBASE_PROJECT_ID")
        if project_id:
            firebase_admin.initialize_app(cred, {
                "projectId": project_id
            })
        else:
            firebase_admin.initialize_app(cred)
        logger.info("Firebase app initialised")

def get_db() -> FirestoreClient:
    """
    Return a Firestore client.
    """
    return _firestore.client()
