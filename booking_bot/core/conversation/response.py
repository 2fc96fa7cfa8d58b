"""
Reply templates (Spanish, es-AR).

Slots are shown in the professional's timezone:
- offers use the short form "Mar 21/10 14:30"
- confirmations use the long form "Martes 21 de octubre"
"""

from typing import Optional
from zoneinfo import ZoneInfo

from booking_bot.core.extraction.heuristic import DATETIME_PROMPT
from booking_bot.core.scheduling.timezones import utc_to_local
from booking_bot.core.scheduling.types import AppointmentStatus, Modality, Slot

WEEKDAY_SHORT = ["Lun", "Mar", "Mié", "Jue", "Vie", "Sáb", "Dom"]
WEEKDAY_LONG = ["Lunes", "Martes", "Miércoles", "Jueves", "Viernes", "Sábado", "Domingo"]
MONTHS = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]

MODALITY_LABELS = {
    Modality.IN_PERSON: "presencial",
    Modality.REMOTE: "virtual",
}


def format_slot_short(slot: Slot, zone: ZoneInfo) -> str:
    """'Mar 21/10 14:30'"""
    local = utc_to_local(slot.start, zone)
    return f"{WEEKDAY_SHORT[local.weekday()]} {local:%d/%m %H:%M}"


def format_day_long(slot: Slot, zone: ZoneInfo) -> str:
    """'Martes 21 de octubre'"""
    local = utc_to_local(slot.start, zone)
    return f"{WEEKDAY_LONG[local.weekday()]} {local.day} de {MONTHS[local.month - 1]}"


class ResponseGenerator:
    """Builds every reply the orchestrator sends."""

    def clarify(self, prompt: Optional[str]) -> str:
        return prompt or DATETIME_PROMPT

    def offer(self, slots: list[Slot], zone: ZoneInfo) -> str:
        lines = ["Tengo estos horarios disponibles:"]
        for i, slot in enumerate(slots, start=1):
            lines.append(f"{i}) {format_slot_short(slot, zone)}")
        lines.append("Respondé con el número de la opción que prefieras.")
        return "\n".join(lines)

    def slot_taken(self, slots: list[Slot], zone: ZoneInfo) -> str:
        prefix = "Ese horario se acaba de ocupar."
        if not slots:
            return f"{prefix} {self.no_availability()}"
        return f"{prefix} {self.offer(slots, zone)}"

    def no_availability(self) -> str:
        return (
            "No encontré horarios disponibles en los próximos días. "
            "¿Querés probar con otro día u horario?"
        )

    def expired(self) -> str:
        return f"Esas opciones ya no están vigentes. {DATETIME_PROMPT}"

    def confirmation(
        self,
        first_name: str,
        slot: Slot,
        zone: ZoneInfo,
        modality: Modality,
        service_name: Optional[str] = None,
        status: AppointmentStatus = AppointmentStatus.CONFIRMED,
    ) -> str:
        local = utc_to_local(slot.start, zone)
        service = f" de {service_name}" if service_name else ""
        reply = (
            f"Listo {first_name} 👌 Agendé un turno{service} el *{format_day_long(slot, zone)}* "
            f"a las *{local:%H:%M}* ({MODALITY_LABELS[modality]})."
        )
        if status == AppointmentStatus.PENDING:
            reply += " Te avisamos cuando quede confirmado."
        return reply

    def failure(self) -> str:
        return "Tuve un problema al registrar el turno. Probá de nuevo en unos minutos."
