"""
Évaluateur d'éligibilité aux services (transport, cantine).

Fonction pure : aucune I/O, aucun effet de bord. Les règles sont appliquées
par ordre de priorité, le premier refus l'emporte, les avertissements
s'accumulent :

1. enrolled == False           → refus not_enrolled
2. payment_status == expired   → refus subscription_expired
3. payment_status == pending   → accordé + payment_pending
4. cantine, diet_type special  → accordé + special_diet (exigences + allergies)
5. cantine, allergies connues  → accordé + allergy_notice
"""

from typing import List, Union

from schoolaccess.schemas.scan import (
    Eligibility,
    LunchAction,
    LunchEnrollment,
    ScanWarning,
    TransportAction,
    TransportEnrollment,
)


def evaluate(
    enrollment: Union[TransportEnrollment, LunchEnrollment],
    action: Union[TransportAction, LunchAction],
) -> Eligibility:
    """Décide si l'inscription donne accès au service demandé par l'action."""
    if enrollment.service_type != action.service_type:
        raise ValueError(
            f"Inscription {enrollment.service_type} évaluée pour une action {action.service_type}."
        )

    if not enrollment.enrolled:
        return Eligibility(granted=False, deny_reason="not_enrolled")

    if enrollment.payment_status == "expired":
        return Eligibility(granted=False, deny_reason="subscription_expired")

    warnings = []
    if enrollment.payment_status == "pending":
        warnings.append(ScanWarning(
            code="payment_pending",
            message="Paiement en attente : accès accordé, régularisation à prévoir.",
        ))

    if isinstance(enrollment, LunchEnrollment):
        warnings.extend(_diet_warnings(enrollment))

    return Eligibility(granted=True, warnings=warnings)


def _diet_warnings(enrollment: LunchEnrollment) -> List[ScanWarning]:
    """Avertissements informatifs pour le personnel de cantine (jamais bloquants)."""
    warnings = []
    allergies = [a for a in enrollment.allergies if a.strip()]

    if enrollment.diet_type == "special":
        requirements = (enrollment.special_requirements or "").strip()
        message = "Régime spécial"
        if requirements:
            message += f" : {requirements}"
        if allergies:
            message += f" (allergies : {', '.join(allergies)})"
        warnings.append(ScanWarning(
            code="special_diet",
            message=message,
            details={"special_requirements": requirements or None, "allergies": allergies},
        ))

    if allergies:
        warnings.append(ScanWarning(
            code="allergy_notice",
            message=f"Allergies : {', '.join(allergies)}",
            details={"allergies": allergies},
        ))

    return warnings
