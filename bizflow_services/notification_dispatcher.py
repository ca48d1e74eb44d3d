"""
bizflow_services.notification_dispatcher -- Best-effort delivery after commit.

Responsibility:
    Turn the side-channel nodes a traversal passed (CC / NOTIFY) and the
    business events of an accepted action into in-app notifications, emails
    and optional SMS, honouring the per-event notification policy.

Architecture position:
    Services -- called by the action handler strictly after the document
    mutation committed.  Talks to the NotificationGateway port and reads
    recipients through the ApproverResolver / UserDirectory.

Invariants enforced:
    - Delivery never raises.  Each channel of each notification is attempted
      independently; a failure is logged as ``notification_dispatch_failed``
      at WARNING and the remaining deliveries continue.
    - CC / NOTIFY emails go out only when the node asks for them, and use the
      node's email template when it has one.
    - With an executor, the whole batch runs on it and the caller does not
      wait.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import Executor
from dataclasses import dataclass

from sqlalchemy.orm import Session

from bizflow_config.schema import NotifyChannel, NotifyPolicy
from bizflow_kernel.domain.documents import Document, DocumentType
from bizflow_kernel.domain.ports import NotificationEvent, NotificationGateway, iter_nonblank
from bizflow_kernel.domain.workflow import CcNode, NotifyNode, WorkflowNode
from bizflow_kernel.logging_config import get_logger
from bizflow_kernel.models.ledger import InAppNotificationModel
from bizflow_services.approver_resolution import ApproverResolver

logger = get_logger("services.notification_dispatcher")

WORKFLOW_CC_EVENT = "workflow_cc"
TODO_PATH = "/workflow/todo"

_TYPE_LABELS = {
    DocumentType.PURCHASE.value: "Purchase",
    DocumentType.REIMBURSEMENT.value: "Reimbursement",
}

EVENT_TITLES: dict[str, str] = {
    "purchase_submitted": "Purchase awaiting approval",
    "purchase_approved": "Purchase approved",
    "purchase_rejected": "Purchase rejected",
    "purchase_transferred": "Purchase approval transferred",
    "reimbursement_submitted": "Reimbursement awaiting finance review",
    "purchase_paid": "Purchase payment completed",
    "payment_issue_marked": "Payment issue reported",
    "payment_issue_resolved": "Payment issue resolved",
    "reimbursement_approved": "Reimbursement approved",
    "reimbursement_rejected": "Reimbursement rejected",
    "reimbursement_transferred": "Reimbursement approval transferred",
    "reimbursement_paid": "Reimbursement paid",
}


@dataclass(frozen=True)
class PendingNotification:
    """A business event addressed to concrete users, not yet delivered."""

    event_type: str
    recipient_ids: tuple[str, ...] = ()
    recipient_roles: tuple[str, ...] = ()
    detail: str | None = None

    @property
    def addressed(self) -> bool:
        return bool(self.recipient_ids or self.recipient_roles)


def document_label(document: Document) -> str:
    if document.document_type is DocumentType.PURCHASE:
        return document.item_name or document.id
    return document.title or document.id


class NotificationDispatcher:
    """
    Delivers notifications for one accepted action.

    Contract:
        ``dispatch`` returns the event types it scheduled.  Whether a given
        channel actually delivered is only visible in the logs.

    Non-goals:
        - No retries and no outbox; a lost notification stays lost.
    """

    def __init__(
        self,
        gateway: NotificationGateway,
        resolver: ApproverResolver,
        policy: NotifyPolicy | None = None,
        app_base_url: str = "http://localhost:3000",
        executor: Executor | None = None,
        sms_channel: str | None = None,
    ) -> None:
        self._gateway = gateway
        self._resolver = resolver
        self._policy = policy or NotifyPolicy.defaults()
        self._base_url = app_base_url.rstrip("/")
        self._executor = executor
        self._sms_channel = sms_channel

    @property
    def link_url(self) -> str:
        return f"{self._base_url}{TODO_PATH}"

    def dispatch(
        self,
        document: Document,
        side_channel_nodes: Sequence[WorkflowNode] = (),
        events: Sequence[PendingNotification] = (),
    ) -> tuple[str, ...]:
        scheduled = [WORKFLOW_CC_EVENT for _ in side_channel_nodes]
        scheduled.extend(e.event_type for e in events if e.addressed)
        if not scheduled:
            return ()

        if self._executor is None:
            self._deliver_all(document, side_channel_nodes, events)
            return tuple(scheduled)
        try:
            self._executor.submit(
                self._deliver_all, document, tuple(side_channel_nodes), tuple(events)
            )
        except RuntimeError as exc:
            logger.warning(
                "notification_dispatch_failed",
                extra={"channel": "executor", "document_id": document.id, "error": str(exc)},
            )
            return ()
        return tuple(scheduled)

    def _deliver_all(
        self,
        document: Document,
        side_channel_nodes: Sequence[WorkflowNode],
        events: Sequence[PendingNotification],
    ) -> None:
        for node in side_channel_nodes:
            try:
                self.notify_side_channel(node, document)
            except Exception as exc:
                logger.warning(
                    "notification_dispatch_failed",
                    extra={"node_id": node.id, "document_id": document.id, "error": str(exc)},
                )
        for pending in events:
            try:
                self.notify_event(pending, document)
            except Exception as exc:
                logger.warning(
                    "notification_dispatch_failed",
                    extra={
                        "event_type": pending.event_type,
                        "document_id": document.id,
                        "error": str(exc),
                    },
                )

    # ------------------------------------------------------------------
    # Side-channel nodes
    # ------------------------------------------------------------------

    def notify_side_channel(self, node: WorkflowNode, document: Document) -> None:
        if not isinstance(node, (CcNode, NotifyNode)):
            return
        recipients = self._resolver.resolve_recipients(node, document)
        if not recipients:
            return

        type_label = _TYPE_LABELS[document.document_type.value]
        node_label = node.name or "CC"
        title = f"{type_label} workflow notice - {node_label}"
        content = "\n".join(
            [
                f"[{title}]",
                f"Document: {document_label(document)}",
                f"Node: {node_label}",
                f"Link: {self.link_url}",
            ]
        )
        event = NotificationEvent(
            event_type=WORKFLOW_CC_EVENT,
            title=title,
            content=content,
            document_type=document.document_type.value,
            document_id=document.id,
            link_url=TODO_PATH,
            metadata={"node_id": node.id},
        )
        self._send_in_app(recipients, event)
        if node.sends_email:
            self._send_email(recipients, f"[{title}]", node.email_template or content, event)

    # ------------------------------------------------------------------
    # Business events
    # ------------------------------------------------------------------

    def notify_event(self, pending: PendingNotification, document: Document) -> None:
        rule = self._policy.rule_for(pending.event_type)
        if not rule.enabled:
            return
        users = list(pending.recipient_ids)
        for role in iter_nonblank(pending.recipient_roles):
            users.extend(self._resolver.directory.list_user_ids_by_role(role))
        recipients = list(iter_nonblank(users))
        if not recipients:
            return

        title = EVENT_TITLES.get(pending.event_type, pending.event_type)
        lines = [f"[{title}]", f"Document: {document_label(document)}"]
        if pending.detail:
            lines.append(pending.detail)
        lines.append(f"Link: {self.link_url}")
        event = NotificationEvent(
            event_type=pending.event_type,
            title=title,
            content="\n".join(lines),
            document_type=document.document_type.value,
            document_id=document.id,
            link_url=TODO_PATH,
        )
        if rule.allows(NotifyChannel.IN_APP):
            self._send_in_app(recipients, event)
        if rule.allows(NotifyChannel.EMAIL):
            self._send_email(recipients, f"[{title}]", event.content, event)
        if self._sms_channel and pending.event_type.endswith(("_submitted", "_transferred")):
            self._send_sms(recipients, title, event)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def _failed(self, channel: str, event: NotificationEvent, exc: Exception) -> None:
        logger.warning(
            "notification_dispatch_failed",
            extra={
                "channel": channel,
                "event_type": event.event_type,
                "document_id": event.document_id,
                "error": str(exc),
            },
        )

    def _send_in_app(self, recipients: Sequence[str], event: NotificationEvent) -> None:
        try:
            created = self._gateway.create_in_app_notifications(recipients, event)
        except Exception as exc:
            self._failed(NotifyChannel.IN_APP.value, event, exc)
            return
        logger.debug(
            "notification_in_app_created",
            extra={"event_type": event.event_type, "count": created},
        )

    def _send_email(
        self,
        recipients: Sequence[str],
        subject: str,
        text: str,
        event: NotificationEvent,
    ) -> None:
        try:
            emails = self._resolver.directory.emails_for(recipients)
            if not emails:
                return
            sent = self._gateway.send_email_messages(emails, subject, text)
        except Exception as exc:
            self._failed(NotifyChannel.EMAIL.value, event, exc)
            return
        if not sent:
            logger.warning(
                "notification_dispatch_failed",
                extra={
                    "channel": NotifyChannel.EMAIL.value,
                    "event_type": event.event_type,
                    "document_id": event.document_id,
                    "error": "gateway reported failure",
                },
            )

    def _send_sms(
        self, recipients: Sequence[str], title: str, event: NotificationEvent
    ) -> None:
        try:
            phones = self._resolver.directory.phones_for(recipients)
            if phones:
                self._gateway.send_sms_text_message(title, self._sms_channel or "", phones)
        except Exception as exc:
            self._failed("sms", event, exc)


class SqlInAppNotificationStore:
    """
    NotificationGateway writing in-app rows to ``in_app_notifications``.

    Over a shared ``session`` each batch is written inside a savepoint, so a
    failed insert rolls back only the notification rows and the caller's
    transaction stays committable.  With a ``session_factory`` every batch
    opens, commits and closes its own session; that is the only safe mode
    when delivery runs on an executor thread.

    Email and SMS are delegated to optional sender callables; without one
    the channel reports failure.
    """

    def __init__(
        self,
        session: Session | None = None,
        email_sender=None,
        sms_sender=None,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        if session is None and session_factory is None:
            raise ValueError("SqlInAppNotificationStore needs a session or a session_factory")
        self._session = session
        self._session_factory = session_factory
        self._email_sender = email_sender
        self._sms_sender = sms_sender

    def create_in_app_notifications(
        self, recipient_ids: Sequence[str], event: NotificationEvent
    ) -> int:
        rows = [
            InAppNotificationModel(
                recipient_id=recipient,
                event_type=event.event_type,
                title=event.title,
                content=event.content,
                document_type=event.document_type,
                document_id=event.document_id,
                link_url=event.link_url,
            )
            for recipient in iter_nonblank(recipient_ids)
        ]
        if not rows:
            return 0
        if self._session_factory is not None:
            self._write_in_own_session(rows)
        else:
            with self._session.begin_nested():
                self._session.add_all(rows)
                self._session.flush()
        return len(rows)

    def _write_in_own_session(self, rows: list[InAppNotificationModel]) -> None:
        session = self._session_factory()
        try:
            session.add_all(rows)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def send_email_messages(self, to: Sequence[str], subject: str, text: str) -> bool:
        if self._email_sender is None:
            return False
        return bool(self._email_sender(list(to), subject, text))

    def send_sms_text_message(
        self, content: str, channel: str, phones: Sequence[str]
    ) -> bool:
        if self._sms_sender is None:
            return False
        return bool(self._sms_sender(content, channel, list(phones)))
