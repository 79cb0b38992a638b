"""Subjects and bodies for the transactional emails the API sends.

Every builder returns ``(subject, html, text)``; delivery is the caller's job.
"""
from html import escape
from typing import Dict, List, Optional
from urllib.parse import urlencode

from .enums import ClientDecision, MemberRole
from .models import ChangeOrder, ClientProfile, Project, ProjectMember, User

_SHELL_OPEN = """
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #f5f6f8; padding: 24px;">
    <div style="max-width: 520px; margin: 0 auto; background: #ffffff; border-radius: 12px; padding: 24px; box-shadow: 0 10px 25px rgba(15,23,42,0.08);">
"""
_SHELL_CLOSE = """
    </div>
  </body>
</html>
"""
_BUTTON = (
    '<a href="{href}" style="display: inline-block; background: {color}; color: #fff; padding: 12px 24px; '
    'border-radius: 999px; text-decoration: none; font-weight: 600;">{label}</a>'
)

ACTION_LABELS = [
    ("approve", "Approve", "#2563eb"),
    ("approve_conditions", "Approve w/ conditions", "#2563eb"),
    ("deny", "Deny", "#ef4444"),
    ("needs_info", "Needs info", "#0ea5e9"),
]

DECISION_LABELS = {
    ClientDecision.approved: "approved",
    ClientDecision.denied: "denied",
    ClientDecision.needs_info: "requested more information on",
}


def format_amount(amount: Optional[float]) -> str:
    if amount is None:
        return "n/a"
    return f"${amount:,.0f}"


def build_invite_link(app_url: str, email: Optional[str]) -> str:
    params = {"mode": "signup", "invite": "1"}
    if email:
        params["email"] = email
    separator = "&" if "?" in app_url else "?"
    return f"{app_url}{separator}{urlencode(params)}"


def invite_email(member: ProjectMember, actor: User, project: Project, app_url: str, app_name: str):
    actor_name = actor.full_name or actor.email or "A teammate"
    role = MemberRole(member.role).value
    link = build_invite_link(app_url, member.email)
    subject = f"You're invited to {project.name} on {app_name}"
    html = f"""{_SHELL_OPEN}
      <h2 style="margin-top: 0; font-size: 20px; color: #0f172a;">You're invited</h2>
      <p style="font-size: 14px; color: #1e293b; line-height: 1.5;">
        {escape(actor_name)} invited you to collaborate on <strong>{escape(project.name)}</strong> in {escape(app_name)}.
      </p>
      <p style="font-size: 13px; color: #475569;">Role: <strong>{escape(role)}</strong></p>
      <div style="margin: 24px 0;">{_BUTTON.format(href=escape(link), color="#2563eb", label=f"Open {escape(app_name)}")}</div>
      <p style="font-size: 12px; color: #64748b;">If the button doesn&apos;t work, copy this link into your browser:<br /><a href="{escape(link)}">{escape(link)}</a></p>
{_SHELL_CLOSE}"""
    text = f"""{actor_name} invited you to collaborate on {project.name} in {app_name}.

Role: {role}

Open {app_name}: {link}

If the link doesn't work, copy and paste it into your browser.
"""
    return subject, html, text


def change_order_client_email(
    change_order: ChangeOrder,
    project: Project,
    client_profile: Optional[ClientProfile],
    respond_url: str,
):
    greeting = (client_profile.contact_name if client_profile else "") or "there"
    amount = format_amount(change_order.amount)
    due = change_order.due_date.isoformat() if change_order.due_date else None
    rows = [("Change", change_order.title), ("Project", project.name), ("Estimated Impact", amount)]
    if due:
        rows.append(("Requested Response", due))
    table_rows = "".join(
        f'<tr><td style="padding: 6px 10px; background: #f1f5f9; font-weight: bold;">{escape(label)}</td>'
        f'<td style="padding: 6px 10px; background: #f8fafc;">{escape(value)}</td></tr>'
        for label, value in rows
    )
    subject = f"Change Order: {change_order.title}"
    html = f"""{_SHELL_OPEN}
      <p style="font-size: 14px; color: #1e293b;">Hello {escape(greeting)},</p>
      <p style="font-size: 14px; color: #1e293b;">{escape(project.name)} has shared a new change order for your review.</p>
      <table style="margin: 16px 0; width: 100%; border-collapse: collapse;"><tbody>{table_rows}</tbody></table>
      <p style="font-size: 14px; color: #1e293b;">Please review the change and provide your decision.</p>
      <div style="margin: 24px 0;">{_BUTTON.format(href=escape(respond_url), color="#2563eb", label="Open change order")}</div>
      <p style="font-size: 12px; color: #64748b;">If the button does not work, copy and paste this link into your browser:<br /><a href="{escape(respond_url)}">{escape(respond_url)}</a></p>
      <p style="font-size: 13px; color: #475569;">Thank you,<br />{escape(project.name)} team</p>
{_SHELL_CLOSE}"""
    due_line = f"Requested response: {due}\n" if due else ""
    text = f"""Hello {greeting},

{project.name} has shared a new change order for your review.

Change: {change_order.title}
Estimated impact: {amount}
{due_line}
Review and sign: {respond_url}

Thank you,
{project.name} team
"""
    return subject, html, text


def _line_item_parts(item: dict, index: int):
    title = (item.get("title") or "").strip() or f"Item {index + 1}"
    description = (item.get("description") or "").strip() or "No description"
    impact = item.get("impactDays") or 0
    cost = float(item.get("cost") or 0)
    return title, description, impact, cost


def change_order_recipient_email(
    change_order: ChangeOrder,
    project: Project,
    action_urls: Dict[str, str],
):
    items: List[dict] = change_order.line_items or []
    subject = f"[Change Order] {change_order.title}"
    items_html = ""
    items_text = ""
    if items:
        lis = []
        blocks = []
        for idx, item in enumerate(items):
            title, description, impact, cost = _line_item_parts(item, idx)
            lis.append(
                f"<li><strong>{escape(title)}</strong><br />{escape(description)}<br />"
                f"Impact: {impact} day(s) - Cost: ${cost:,.2f}</li>"
            )
            blocks.append(f"{title}\n{description}\nImpact: {impact} day(s) - Cost: ${cost:,.2f}")
        items_html = f"<h3>Line items</h3><ul>{''.join(lis)}</ul>"
        items_text = "\n\nLine items:\n" + "\n\n".join(blocks)
    buttons = "".join(
        f'<p>{_BUTTON.format(href=escape(action_urls[key]), color=color, label=escape(label))}</p>'
        for key, label, color in ACTION_LABELS
    )
    fallback = "".join(
        f'<li>{escape(label)}: <a href="{escape(action_urls[key])}">{escape(action_urls[key])}</a></li>'
        for key, label, _ in ACTION_LABELS
    )
    description_html = f"<p>{escape(change_order.description)}</p>" if change_order.description else ""
    html = f"""{_SHELL_OPEN}
      <h2 style="margin-top: 0; font-size: 20px; color: #0f172a;">{escape(project.name)}</h2>
      <p style="font-size: 14px; color: #1e293b;">You have a new change order to review.</p>
      <h3>{escape(change_order.title)}</h3>
      {description_html}
      {items_html}
      <p style="font-size: 14px; color: #1e293b;">Total: <strong>${(change_order.amount or 0):,.2f}</strong></p>
      <hr style="margin: 24px 0; border: none; border-top: 1px solid #e5e7eb;" />
      <p>Please choose an option to respond:</p>
      {buttons}
      <p style="font-size: 12px; color: #64748b;">If the buttons do not work, copy and paste these links:</p>
      <ul style="font-size: 12px; color: #64748b;">{fallback}</ul>
{_SHELL_CLOSE}"""
    options = "\n".join(f"{label}: {action_urls[key]}" for key, label, _ in ACTION_LABELS)
    description_text = f"\n{change_order.description}\n" if change_order.description else ""
    text = f"""{project.name}

You have a new change order to review: {change_order.title}
{description_text}
Respond with one of the options below:

{options}
{items_text}
"""
    return subject, html, text


def client_decision_summary(
    change_order: ChangeOrder,
    client_profile: Optional[ClientProfile],
    decision: ClientDecision,
    notes: Optional[str],
    workspace_url: str,
):
    client_label = "Client"
    if client_profile:
        client_label = client_profile.company_name or client_profile.contact_name or "Client"
    label = DECISION_LABELS[decision]
    subject = f"Client {label} change order: {change_order.title}"
    notes_html = f"<p><em>Client notes:</em> {escape(notes)}</p>" if notes else ""
    html = f"""{_SHELL_OPEN}
      <p style="font-size: 14px; color: #1e293b;"><strong>{escape(client_label)}</strong> {escape(label)} change order <strong>{escape(change_order.title)}</strong>.</p>
      {notes_html}
      <p><a href="{escape(workspace_url)}" style="color: #2563eb;">Open workspace</a></p>
{_SHELL_CLOSE}"""
    notes_text = f"Client notes: {notes}\n" if notes else ""
    text = f"""{client_label} {label} change order "{change_order.title}".
{notes_text}
Open workspace: {workspace_url}
"""
    return subject, html, text
