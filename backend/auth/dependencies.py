import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from backend.auth import jwt_handler
from backend.database import SessionLocal
from backend.models.doctor import Doctor

security = HTTPBearer()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_doctor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Doctor:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    if payload.get("role") != jwt_handler.DOCTOR_ROLE:
        raise HTTPException(status_code=403, detail="Only doctors can perform this action")

    doctor = db.query(Doctor).filter(Doctor.email == email).first()
    if doctor is None:
        raise HTTPException(status_code=401, detail="Doctor not found")
    return doctor
