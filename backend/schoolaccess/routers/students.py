"""
Router pour les élèves : image du QR code imprimé sur la carte.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from schoolaccess.database import get_db
from schoolaccess.models.student import Student
from schoolaccess.services.qr_service import generate_qr_image, generate_token

router = APIRouter(prefix="/api/v1/students", tags=["Élèves"])


@router.get("/{admission_number}/qr", summary="Image PNG du QR code d'un élève")
def get_student_qr(admission_number: str, db: Session = Depends(get_db)):
    """Retourne le QR code enregistré pour l'élève (ou généré depuis son numéro d'admission)."""
    student = db.execute(
        select(Student).where(Student.admission_number == admission_number)
    ).scalar_one_or_none()
    if student is None:
        raise HTTPException(status_code=404, detail="Élève introuvable.")

    token = student.qr_code or generate_token(student.admission_number)
    return Response(
        content=generate_qr_image(token),
        media_type="image/png",
        headers={"Content-Disposition": f"inline; filename=qr_{student.admission_number}.png"},
    )
