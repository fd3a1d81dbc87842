from __future__ import annotations

from urllib.parse import urlparse

from formproxy.errors import AuthorizationError, NotFoundError, ValidationError
from formproxy.models import Alias, Form
from formproxy.ports import AliasStore, FormStore
from formproxy.services.alias_cache import AliasCache
from formproxy.services.alias_normalizer import classify, normalize
from formproxy.services.logger_service import LoggerService

# Discord caps webhook usernames at 80 characters.
FORM_NAME_LIMIT = 80


class IdentityService:
    def __init__(self, forms: FormStore, aliases: AliasStore, cache: AliasCache, logger: LoggerService) -> None:
        self.forms = forms
        self.aliases = aliases
        self.cache = cache
        self.logger = logger

    async def create_form(self, user_id: int, name: str, avatar_url: str | None = None) -> Form:
        clean_name = clamp_form_name(name)
        clean_avatar = validate_avatar_url(avatar_url) if avatar_url is not None else None
        form = await self.forms.create(user_id, clean_name, clean_avatar)
        self.logger.log("form.create", user_id=user_id, form_id=form.id, name=form.name)
        return form

    async def edit_form(self, form_id: str, user_id: int, *, name: str | None = None, avatar_url: str | None = None) -> Form:
        if name is None and avatar_url is None:
            raise ValidationError("At least one field must be provided for update")
        clean_name = clamp_form_name(name) if name is not None else None
        clean_avatar = validate_avatar_url(avatar_url) if avatar_url else avatar_url
        await self._owned_form(form_id, user_id)
        form = await self.forms.update(form_id, name=clean_name, avatar_url=clean_avatar)
        self.logger.log("form.edit", user_id=user_id, form_id=form_id, name=form.name)
        return form

    async def delete_form(self, form_id: str, user_id: int) -> int:
        await self._owned_form(form_id, user_id)
        removed = await self.forms.delete(form_id)
        self.cache.invalidate(user_id)
        self.logger.log("form.delete", user_id=user_id, form_id=form_id, aliases_removed=removed)
        return removed

    async def list_forms(self, user_id: int) -> list[Form]:
        return await self.forms.list_by_user(user_id)

    async def find_form(self, user_id: int, name_or_id: str) -> Form:
        """Resolve a form by id or case-insensitive name among the user's forms."""
        wanted = name_or_id.strip()
        forms = await self.forms.list_by_user(user_id)
        for form in forms:
            if form.id == wanted:
                return form
        for form in forms:
            if form.name.lower() == wanted.lower():
                return form
        raise NotFoundError("Form not found")

    async def add_alias(self, form_id: str, user_id: int, trigger: str) -> Alias:
        trigger_norm = normalize(trigger)
        await self._owned_form(form_id, user_id)
        alias = await self.aliases.create(user_id, form_id, trigger, trigger_norm, classify(trigger_norm))
        self.cache.invalidate(user_id)
        self.logger.log("alias.add", user_id=user_id, form_id=form_id, alias_id=alias.id, trigger=alias.trigger_norm, kind=alias.kind)
        return alias

    async def remove_alias(self, alias_id: str, user_id: int) -> None:
        alias = await self.aliases.get_by_id(alias_id, user_id)
        if alias is None:
            raise NotFoundError("Alias not found or does not belong to user")
        await self.aliases.delete(alias_id)
        self.cache.invalidate(user_id)
        self.logger.log("alias.remove", user_id=user_id, alias_id=alias_id, form_id=alias.form_id)

    async def list_aliases(self, form_id: str, user_id: int) -> tuple[Form, list[Alias]]:
        form = await self._owned_form(form_id, user_id)
        return form, await self.aliases.get_by_form(form_id)

    async def _owned_form(self, form_id: str, user_id: int) -> Form:
        form = await self.forms.get_by_id(form_id)
        if form is None:
            raise NotFoundError("Form not found")
        if form.user_id != int(user_id):
            raise AuthorizationError("Form does not belong to user")
        return form


def clamp_form_name(name: str | None) -> str:
    clean = " ".join(str(name or "").split())
    if not clean:
        raise ValidationError("Form name cannot be empty")
    return clean[:FORM_NAME_LIMIT]


def validate_avatar_url(url: str) -> str:
    text = str(url or "").strip()
    if not text:
        raise ValidationError("Avatar URL cannot be empty")
    parsed = urlparse(text)
    if parsed.scheme not in {"http", "https"}:
        raise ValidationError("Avatar URL must start with http:// or https://")
    if not parsed.netloc:
        raise ValidationError("Avatar URL must include a valid domain name")
    return text
