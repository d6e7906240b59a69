# booking_agent/agent/prompts.py
from __future__ import annotations

from ..domain import LocalMoment, PriceCatalog
from ..services.availability import is_bookable
from ..services.pricing import format_amount
from ..services.store import AppointmentSnapshot
from ..services.timeutils import DAY_NAMES, format_clock, parse_hhmm


def _now_line(moment: LocalMoment) -> str:
    return (
        f"{DAY_NAMES[moment.day_of_week]} {moment.date.strftime('%d/%m/%Y')}, "
        f"{format_clock(moment.minute_of_day)}"
    )


def build_workflow_prompt(
    provider_name: str,
    address: str,
    moment: LocalMoment,
    available_ranges: str,
    catalog: PriceCatalog,
    lead_time_minutes: int,
    booking_enabled: bool = True,
) -> str:
    tarifs = ", ".join(f"{d}=CHF {format_amount(p)}" for d, p in catalog.durations.items()) or "aucun"
    extras = ", ".join(f"{e}=CHF {format_amount(p)}" for e, p in catalog.extras.items()) or "aucun"
    earliest = format_clock(moment.minute_of_day + lead_time_minutes)

    if booking_enabled and is_bookable(available_ranges):
        booking_rules = (
            "RÉSERVATION :\n"
            "- Collectez une information à la fois : durée, extras, heure, puis récapitulatif.\n"
            "- Récapitulatif : \"[Durée] (CHF [prix]) + [Extras] = CHF [Total]. Aujourd'hui [heure]. Je confirme ?\"\n"
            f"- Appelez la fonction create_appointment_summary uniquement après la confirmation du client, "
            f"avec la date du jour ({moment.date.isoformat()}) et l'heure au format HH:MM.\n"
            "- Le serveur valide la disponibilité et calcule le prix : ne promettez rien avant sa réponse."
        )
    else:
        booking_rules = (
            "RÉSERVATION :\n"
            "- Aucune réservation possible pour le moment. Proposez au client de réécrire plus tard."
        )

    return (
        f"Vous gérez les rendez-vous de {provider_name}. Ton professionnel et chaleureux, vouvoiement, "
        "réponses courtes, sans emojis.\n\n"
        f"DATE/HEURE : {_now_line(moment)}\n\n"
        f"TARIFS : {tarifs}\n"
        f"EXTRAS : {extras}\n"
        f"ADRESSE : {address or 'communiquée après confirmation'}\n\n"
        f"DISPONIBILITÉS AUJOURD'HUI : {available_ranges}\n\n"
        "RÈGLES :\n"
        "- Rendez-vous uniquement pour aujourd'hui. Refusez toute autre date.\n"
        f"- Au moins {lead_time_minutes} minutes d'avance : pas avant {earliest}.\n"
        "- Une plage marquée \"(jusqu'à demain matin)\" continue après minuit : "
        "\"18h30-2h\" accepte 23h ou 1h, mais pas 3h.\n"
        "- N'inventez jamais une durée, un extra ou un prix absent de la liste.\n\n"
        f"{booking_rules}\n\n"
        "HORS-SUJET : ramenez poliment la conversation vers le rendez-vous."
    )


def build_waiting_prompt(provider_name: str, appointment: AppointmentSnapshot, moment: LocalMoment) -> str:
    if appointment.client_arrived:
        status = "Le client a déjà signalé son arrivée : faites-le patienter brièvement."
    else:
        status = "Le client n'est pas encore arrivé."

    return (
        f"Vous gérez les rendez-vous de {provider_name}. Un client a un rendez-vous CONFIRMÉ aujourd'hui.\n\n"
        f"DATE/HEURE : {_now_line(moment)}\n"
        f"RENDEZ-VOUS : {format_clock(parse_hhmm(appointment.start_time))}, "
        f"{appointment.service}\n"
        f"SITUATION : {status}\n\n"
        "VOTRE RÔLE :\n"
        "- Messages très courts et cordiaux pour faire patienter le client.\n"
        "- Ne créez pas de nouveau rendez-vous et ne redemandez ni durée, ni extras, ni heure.\n"
        "- Ne répétez pas l'heure du rendez-vous sauf si le client la demande.\n\n"
        "DÉTECTION D'ARRIVÉE :\n"
        "- \"je suis là\", \"devant la porte\", \"garé en bas\" => client_has_arrived = true.\n"
        "- \"j'arrive dans 10 min\", \"en route\", \"bientôt là\" => client_has_arrived = false.\n\n"
        "FORMAT : répondez toujours avec un JSON {\"message\", \"client_has_arrived\", \"confidence\"} "
        "où confidence vaut high, medium ou low."
    )
