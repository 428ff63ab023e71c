"""Ticket form validation and plain-text rendering."""

from helpdesk.tickets.schemas import TicketDraft, TicketRecord
from helpdesk.utils.identifiers import format_cpf, is_valid_cpf


def validate_draft(draft: TicketDraft) -> list[str]:
    """Return the form errors for a draft (empty list means it can be saved)."""
    errors: list[str] = []
    if not draft.title.strip():
        errors.append("Campo obrigatório não preenchido: Resumo")
    if not draft.degree:
        errors.append("Campo obrigatório não preenchido: Grau")
    # The adjudicating body is only required once a degree is chosen
    if draft.degree and not draft.adjudicating_body:
        errors.append("Campo obrigatório não preenchido: Órgão Julgador")
    if not draft.description.strip():
        errors.append("Campo obrigatório não preenchido: Descrição do problema")
    if draft.affected_user_identifier and not is_valid_cpf(draft.affected_user_identifier):
        errors.append("CPF inválido")
    return errors


def format_user_line(ticket: TicketRecord) -> str:
    """One-line "name / CPF / profile / body" label used in ticket lists."""
    parts = [
        ticket.affected_user_name,
        format_cpf(ticket.affected_user_identifier) if ticket.affected_user_identifier else None,
        ticket.affected_user_profile,
        ticket.adjudicating_body,
    ]
    return " / ".join(p for p in parts if p)


def render_ticket_text(ticket: TicketRecord) -> str:
    """Plain-text block pasted into the external ticketing system."""
    text = f"Título: {ticket.title}\n\n"
    text += f"Descrição: {ticket.description}\n\n"

    if ticket.process_number:
        text += f"Número do Processo: {ticket.process_number}\n\n"

    user_parts = [
        p for p in (
            ticket.affected_user_name,
            ticket.affected_user_identifier,
            ticket.affected_user_profile,
        ) if p
    ]
    if user_parts:
        text += "Usuário: " + " - ".join(user_parts) + "\n\n"

    return text
