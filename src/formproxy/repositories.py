from __future__ import annotations

from collections import defaultdict

from formproxy.errors import NotFoundError, ValidationError
from formproxy.models import Alias, AliasKind, Form, ProxiedMessage, utc_now_iso
from formproxy.storage import MessagePackStore
from formproxy.utils.ids import new_row_id


class FormRepo:
    TABLE = "forms"

    def __init__(self, store: MessagePackStore) -> None:
        self.store = store

    async def get_by_id(self, form_id: str) -> Form | None:
        row = self.store.table(self.TABLE).get(str(form_id))
        return Form.from_row(row) if isinstance(row, dict) else None

    async def list_by_user(self, user_id: int) -> list[Form]:
        rows = [Form.from_row(row) for row in self.store.table(self.TABLE).values() if int(row.get("user_id", 0)) == int(user_id)]
        return sorted(rows, key=lambda form: form.id)

    async def create(self, user_id: int, name: str, avatar_url: str | None = None) -> Form:
        if not name.strip():
            raise ValidationError("Form name cannot be empty")
        form = Form(id=new_row_id(), user_id=int(user_id), name=name.strip(), avatar_url=avatar_url or None, created_at=utc_now_iso())
        self.store.table(self.TABLE)[form.id] = form.to_row()
        self.store.touch()
        return form

    async def update(self, form_id: str, *, name: str | None = None, avatar_url: str | None = None) -> Form:
        row = self.store.table(self.TABLE).get(str(form_id))
        if not isinstance(row, dict):
            raise NotFoundError("Form not found")
        if name is not None:
            row["name"] = name.strip()
        if avatar_url is not None:
            row["avatar_url"] = avatar_url or None
        self.store.touch()
        return Form.from_row(row)

    async def delete(self, form_id: str) -> int:
        """Delete a form and its aliases in one step. Returns the number of aliases removed."""
        forms = self.store.table(self.TABLE)
        if str(form_id) not in forms:
            raise NotFoundError("Form not found")
        aliases = self.store.table(AliasRepo.TABLE)
        doomed = [alias_id for alias_id, row in aliases.items() if str(row.get("form_id")) == str(form_id)]
        for alias_id in doomed:
            del aliases[alias_id]
        del forms[str(form_id)]
        self.store.touch()
        return len(doomed)


class AliasRepo:
    TABLE = "aliases"

    def __init__(self, store: MessagePackStore) -> None:
        self.store = store

    def _rows(self) -> list[Alias]:
        return [Alias.from_row(row) for row in self.store.table(self.TABLE).values()]

    async def get_grouped_by_form(self, user_id: int) -> dict[str, list[Alias]]:
        grouped: dict[str, list[Alias]] = defaultdict(list)
        for alias in sorted(self._rows(), key=lambda row: row.id):
            if alias.user_id == int(user_id):
                grouped[alias.form_id].append(alias)
        return dict(grouped)

    async def get_by_form(self, form_id: str) -> list[Alias]:
        return sorted((alias for alias in self._rows() if alias.form_id == str(form_id)), key=lambda row: row.id)

    async def get_by_id(self, alias_id: str, user_id: int) -> Alias | None:
        row = self.store.table(self.TABLE).get(str(alias_id))
        if not isinstance(row, dict):
            return None
        alias = Alias.from_row(row)
        return alias if alias.user_id == int(user_id) else None

    async def create(self, user_id: int, form_id: str, trigger_raw: str, trigger_norm: str, kind: AliasKind) -> Alias:
        if not trigger_raw.strip():
            raise ValidationError("Alias trigger is required")
        if not trigger_norm.strip():
            raise ValidationError("Normalized alias trigger is required")
        if await self.find_collision(user_id, trigger_norm) is not None:
            raise ValidationError(f'Alias "{trigger_raw.strip()}" already exists for this user')
        alias = Alias(
            id=new_row_id(),
            user_id=int(user_id),
            form_id=str(form_id),
            trigger_raw=trigger_raw.strip(),
            trigger_norm=trigger_norm.strip(),
            kind=kind,
            created_at=utc_now_iso(),
        )
        self.store.table(self.TABLE)[alias.id] = alias.to_row()
        self.store.touch()
        return alias

    async def delete(self, alias_id: str) -> None:
        if self.store.table(self.TABLE).pop(str(alias_id), None) is None:
            raise NotFoundError("Alias not found")
        self.store.touch()

    async def find_collision(self, user_id: int, trigger_norm: str) -> Alias | None:
        wanted = trigger_norm.strip().lower()
        for alias in self._rows():
            if alias.user_id == int(user_id) and alias.trigger_norm.lower() == wanted:
                return alias
        return None


class ProxiedMessageRepo:
    TABLE = "proxied_messages"

    def __init__(self, store: MessagePackStore) -> None:
        self.store = store

    async def insert(self, record: ProxiedMessage) -> None:
        table = self.store.table(self.TABLE)
        if record.id in table:
            raise ValidationError(f"Linkage {record.id} already exists")
        if not record.created_at:
            record.created_at = utc_now_iso()
        table[record.id] = record.to_row()
        self.store.touch()

    async def find_by_message_id(self, message_id: int) -> ProxiedMessage | None:
        for row in self.store.table(self.TABLE).values():
            if int(row.get("message_id", 0)) == int(message_id):
                return ProxiedMessage.from_row(row)
        return None

    async def delete_by_row_id(self, row_id: str) -> bool:
        existed = self.store.table(self.TABLE).pop(str(row_id), None) is not None
        if existed:
            self.store.touch()
        return existed

    async def count(self) -> int:
        return len(self.store.table(self.TABLE))
