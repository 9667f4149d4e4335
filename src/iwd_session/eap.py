"""WPA-Enterprise (802.1X) profile editor.

The wizard is a small focus state machine::

    SchemeChoice -> Field(s, 0) -> ... -> Field(s, n-1) -> Apply -> SchemeChoice

Backward steps walk the same ring in reverse. While the scheme selector is
focused the active scheme can be cycled; the field layout of every scheme
comes from :data:`SCHEMES`, so the step arithmetic never depends on a
particular scheme. A successful apply writes ``<state_dir>/<name>.8021x``
and publishes :class:`~iwd_session.events.AuthConfigured`.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union

from .channels import Channel
from .errors import ChannelClosed, ValidationFailed
from .events import AuthConfigured, Event, KeyPress
from .text_input import TextInput

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path("/var/lib/iwd")

REQUIRED_FIELD = "Required field."
PATH_NOT_ABSOLUTE = "The file path should be absolute."
PATH_MISSING = "The file does not exist."


class Scheme(str, Enum):
    TTLS = "TTLS"
    PEAP = "PEAP"
    PWD = "PWD"
    TLS = "TLS"


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Static description of one input of a scheme."""

    name: str
    label: str
    key: str
    required: bool = True
    path: bool = False
    secret: bool = False


@dataclass(frozen=True, slots=True)
class SchemeSpec:
    scheme: Scheme
    label: str
    # Profile lines in output order: editable fields or fixed (key, value) pairs.
    layout: tuple[Union[FieldSpec, tuple[str, str]], ...]

    @property
    def fields(self) -> tuple[FieldSpec, ...]:
        return tuple(item for item in self.layout if isinstance(item, FieldSpec))


def _tunneled(scheme: Scheme, label: str, phase2_method: str) -> SchemeSpec:
    prefix = f"EAP-{scheme.value}"
    return SchemeSpec(
        scheme=scheme,
        label=label,
        layout=(
            FieldSpec("identity", "Identity", "EAP-Identity"),
            FieldSpec("ca_cert", "CA Certificate", f"{prefix}-CACert", required=False, path=True),
            (f"{prefix}-Phase2-Method", phase2_method),
            FieldSpec("phase2_identity", "Phase 2 Identity", f"{prefix}-Phase2-Identity"),
            FieldSpec(
                "phase2_password",
                "Phase 2 Password",
                f"{prefix}-Phase2-Password",
                secret=True,
            ),
        ),
    )


SCHEMES: dict[Scheme, SchemeSpec] = {
    Scheme.TTLS: _tunneled(Scheme.TTLS, "TTLS", "Tunneled-MSCHAPv2"),
    Scheme.PEAP: _tunneled(Scheme.PEAP, "PEAP", "MSCHAPV2"),
    Scheme.PWD: SchemeSpec(
        scheme=Scheme.PWD,
        label="PWD",
        layout=(
            FieldSpec("identity", "Identity", "EAP-Identity"),
            FieldSpec("password", "Password", "EAP-Password", secret=True),
        ),
    ),
    Scheme.TLS: SchemeSpec(
        scheme=Scheme.TLS,
        label="TLS",
        layout=(
            FieldSpec("ca_cert", "CA Certificate", "EAP-TLS-CACert", path=True),
            FieldSpec("identity", "Identity", "EAP-Identity"),
            FieldSpec("client_cert", "Client Certificate", "EAP-TLS-ClientCert", path=True),
            FieldSpec("client_key", "Client Key", "EAP-TLS-ClientKey", path=True),
            FieldSpec(
                "key_passphrase",
                "Key Passphrase",
                "EAP-TLS-ClientKeyPassphrase",
                required=False,
                secret=True,
            ),
        ),
    ),
}

SCHEME_ORDER: tuple[Scheme, ...] = (Scheme.TTLS, Scheme.PEAP, Scheme.PWD, Scheme.TLS)


def encode_network_name(name: str) -> str:
    """Return the file stem iwd uses for ``name``."""

    if name and all(char.isascii() and (char.isalnum() or char in " -_") for char in name):
        return name
    return "=" + name.encode("utf-8").hex()


def profile_path(network: str, state_dir: Path | str = DEFAULT_STATE_DIR) -> Path:
    return Path(state_dir) / f"{encode_network_name(network)}.8021x"


class ProfileField:
    """Editable value and last validation error for one :class:`FieldSpec`."""

    def __init__(self, spec: FieldSpec) -> None:
        self.spec = spec
        self.input = TextInput()
        self.error: str | None = None

    @property
    def value(self) -> str:
        return self.input.value

    def validate(self) -> str | None:
        self.error = None
        value = self.value
        if not value:
            if self.spec.required:
                self.error = REQUIRED_FIELD
            return self.error
        if self.spec.path:
            path = Path(value)
            if not path.is_absolute():
                self.error = PATH_NOT_ABSOLUTE
            elif not path.exists():
                self.error = PATH_MISSING
        return self.error


class EnterpriseProfile:
    """Field values for the active scheme."""

    def __init__(self, network: str, scheme: Scheme = SCHEME_ORDER[0]) -> None:
        self.network = network
        self.scheme = scheme
        self.fields = [ProfileField(spec) for spec in SCHEMES[scheme].fields]

    @property
    def spec(self) -> SchemeSpec:
        return SCHEMES[self.scheme]

    def switch(self, scheme: Scheme) -> None:
        """Activate ``scheme``; values typed for the previous one are dropped."""

        self.scheme = scheme
        self.fields = [ProfileField(spec) for spec in SCHEMES[scheme].fields]

    def field(self, name: str) -> ProfileField:
        for item in self.fields:
            if item.spec.name == name:
                return item
        raise KeyError(name)

    def set(self, name: str, value: str) -> None:
        self.field(name).input.set(value)

    def validate(self) -> dict[str, str]:
        errors: dict[str, str] = {}
        for item in self.fields:
            message = item.validate()
            if message is not None:
                errors[item.spec.name] = message
        return errors

    def render(self) -> str:
        lines = ["[Security]", f"EAP-Method={self.scheme.value}"]
        values = {item.spec.name: item.value for item in self.fields}
        for entry in self.spec.layout:
            if isinstance(entry, FieldSpec):
                value = values.get(entry.name, "")
                if value:
                    lines.append(f"{entry.key}={value}")
            else:
                key, value = entry
                lines.append(f"{key}={value}")
        lines.extend(["", "[Settings]", "AutoConnect=true", ""])
        return "\n".join(lines)


def write_profile(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` in one step."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_path = Path(tmp.name)
    try:
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


class FocusKind(str, Enum):
    SCHEME_CHOICE = "scheme_choice"
    FIELD = "field"
    APPLY = "apply"


@dataclass(frozen=True, slots=True)
class WizardFocus:
    kind: FocusKind
    scheme: Scheme | None = None
    index: int | None = None

    @classmethod
    def scheme_choice(cls) -> "WizardFocus":
        return cls(FocusKind.SCHEME_CHOICE)

    @classmethod
    def field(cls, scheme: Scheme, index: int) -> "WizardFocus":
        return cls(FocusKind.FIELD, scheme, index)

    @classmethod
    def apply(cls) -> "WizardFocus":
        return cls(FocusKind.APPLY)


class EnterpriseAuthWizard:
    def __init__(
        self,
        network: str,
        events: Channel[Event],
        *,
        state_dir: Path | str = DEFAULT_STATE_DIR,
        scheme: Scheme = SCHEME_ORDER[0],
    ) -> None:
        self.network = network
        self.profile = EnterpriseProfile(network, scheme)
        self.show_secrets = False
        self._events = events
        self._state_dir = Path(state_dir)
        self._focus = WizardFocus.scheme_choice()

    # ------------------------------ properties -----------------------------
    @property
    def focus(self) -> WizardFocus:
        return self._focus

    @property
    def scheme(self) -> Scheme:
        return self.profile.scheme

    @property
    def path(self) -> Path:
        return profile_path(self.network, self._state_dir)

    @property
    def focused_field(self) -> ProfileField | None:
        if self._focus.kind is not FocusKind.FIELD or self._focus.index is None:
            return None
        return self.profile.fields[self._focus.index]

    # ----------------------------- transitions -----------------------------
    def forward(self) -> WizardFocus:
        count = len(self.profile.fields)
        focus = self._focus
        if focus.kind is FocusKind.SCHEME_CHOICE:
            self._focus = WizardFocus.field(self.scheme, 0) if count else WizardFocus.apply()
        elif focus.kind is FocusKind.FIELD:
            index = (focus.index or 0) + 1
            self._focus = (
                WizardFocus.field(self.scheme, index) if index < count else WizardFocus.apply()
            )
        else:
            self._focus = WizardFocus.scheme_choice()
        return self._focus

    def backward(self) -> WizardFocus:
        count = len(self.profile.fields)
        focus = self._focus
        if focus.kind is FocusKind.SCHEME_CHOICE:
            self._focus = WizardFocus.apply()
        elif focus.kind is FocusKind.FIELD:
            index = (focus.index or 0) - 1
            self._focus = (
                WizardFocus.field(self.scheme, index) if index >= 0 else WizardFocus.scheme_choice()
            )
        else:
            self._focus = (
                WizardFocus.field(self.scheme, count - 1) if count else WizardFocus.scheme_choice()
            )
        return self._focus

    def next_scheme(self) -> Scheme:
        return self._cycle_scheme(1)

    def previous_scheme(self) -> Scheme:
        return self._cycle_scheme(-1)

    def _cycle_scheme(self, step: int) -> Scheme:
        if self._focus.kind is not FocusKind.SCHEME_CHOICE:
            return self.scheme
        position = SCHEME_ORDER.index(self.scheme)
        scheme = SCHEME_ORDER[(position + step) % len(SCHEME_ORDER)]
        self.profile.switch(scheme)
        logger.debug("EAP scheme for %s set to %s", self.network, scheme.value)
        return scheme

    def toggle_secrets(self) -> bool:
        self.show_secrets = not self.show_secrets
        return self.show_secrets

    # ------------------------------ operations -----------------------------
    def validate(self) -> dict[str, str]:
        """Validate the active scheme's fields and record per-field errors."""

        return self.profile.validate()

    def apply(self) -> Path:
        """Validate, write the profile and publish :class:`AuthConfigured`."""

        errors = self.validate()
        if errors:
            logger.info("Profile for %s not saved: %s", self.network, ", ".join(errors))
            raise ValidationFailed(errors)
        path = self.path
        write_profile(path, self.profile.render())
        logger.info("Wrote %s profile for %s to %s", self.scheme.value, self.network, path)
        try:
            self._events.send(AuthConfigured(self.network))
        except ChannelClosed:
            logger.warning("Session closed before %s could be reconnected", self.network)
        return path

    def handle_key(self, key: KeyPress) -> None:
        kind = self._focus.kind
        if key.code in (KeyPress.TAB, KeyPress.DOWN):
            self.forward()
        elif key.code in (KeyPress.BACKTAB, KeyPress.UP):
            self.backward()
        elif kind is FocusKind.SCHEME_CHOICE:
            if key.code in (KeyPress.RIGHT, "l"):
                self.next_scheme()
            elif key.code in (KeyPress.LEFT, "h"):
                self.previous_scheme()
            elif key.code == KeyPress.ENTER:
                self.forward()
        elif kind is FocusKind.FIELD:
            if key.code == KeyPress.ENTER:
                self.validate()
            else:
                field = self.focused_field
                if field is not None:
                    field.input.handle_key(key)
        elif key.code == KeyPress.ENTER:
            try:
                self.apply()
            except ValidationFailed:
                # Messages are attached to the fields.
                return

    def to_dict(self) -> dict[str, object | None]:
        fields = []
        for item in self.profile.fields:
            value = item.value
            if item.spec.secret and not self.show_secrets:
                value = item.input.masked()
            fields.append(
                {
                    "name": item.spec.name,
                    "label": item.spec.label,
                    "value": value,
                    "required": item.spec.required,
                    "error": item.error,
                }
            )
        return {
            "network": self.network,
            "scheme": self.scheme.value,
            "focus": self._focus.kind.value,
            "field_index": self._focus.index,
            "fields": fields,
        }


__all__ = [
    "DEFAULT_STATE_DIR",
    "EnterpriseAuthWizard",
    "EnterpriseProfile",
    "FieldSpec",
    "FocusKind",
    "ProfileField",
    "SCHEMES",
    "SCHEME_ORDER",
    "Scheme",
    "SchemeSpec",
    "WizardFocus",
    "encode_network_name",
    "profile_path",
    "write_profile",
]
