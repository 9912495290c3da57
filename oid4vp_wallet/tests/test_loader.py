from pathlib import Path
from unittest import mock

import cbor2
import pytest
from acapy_agent.wallet.jwt import b64_to_dict, dict_to_b64
from acapy_agent.wallet.util import b64_to_bytes, bytes_to_b64
from cryptography import x509

from mso_mdoc.cred_processor import MsoMdocFormatHandler
from mso_mdoc.key_generation import generate_issuer_material
from mso_mdoc.mdoc.codec import MdocCredential
from mso_mdoc.mdoc.issuer import MDL_DOCTYPE, MDL_NAMESPACE, issue_mdoc
from oid4vp_wallet.error import CodecError, CredentialError
from oid4vp_wallet.loader import load_credentials, parse_credential
from oid4vp_wallet.processors import FormatHandlers
from oid4vp_wallet.signer import AskarSigner
from oid4vp_wallet.store import CredentialStore
from sd_jwt_vc.sd_jwt import SdJwtCredential


@pytest.fixture
def store():
    yield CredentialStore()


def write(directory: Path, name: str, content: str):
    (directory / name).write_text(f"{content}\n", encoding="utf-8")


class TestParseCredential:
    async def test_detects_format(self, pid_sd_jwt: str, mdl: str):
        handlers = FormatHandlers.default()

        assert isinstance(parse_credential(pid_sd_jwt, handlers), SdJwtCredential)
        assert isinstance(parse_credential(mdl, handlers), MdocCredential)

    def test_rejected_by_every_format(self):
        with pytest.raises(CodecError) as exc_info:
            parse_credential("garbage", FormatHandlers.default())

        assert "dc+sd-jwt" in str(exc_info.value)
        assert "mso_mdoc" in str(exc_info.value)

    def test_no_formats(self):
        with pytest.raises(CodecError):
            parse_credential("garbage", FormatHandlers())


class TestLoadCredentials:
    async def test_load(self, tmp_path: Path, store, pid_sd_jwt: str, mdl: str):
        write(tmp_path, "pid", pid_sd_jwt)
        write(tmp_path, "mdl", mdl)

        loaded = load_credentials(store, tmp_path)

        assert loaded == ["mdl", "pid"]
        assert store.get("pid").format == "dc+sd-jwt"
        assert store.get("mdl").format == "mso_mdoc"

    def test_creates_directory(self, tmp_path: Path, store):
        path = tmp_path / "credentials" / "1.0"

        assert load_credentials(store, path) == []
        assert path.is_dir()

    def test_directory_unavailable(self, tmp_path: Path, store):
        path = tmp_path / "file"
        path.write_text("not a directory")

        with pytest.raises(CredentialError):
            load_credentials(store, path / "credentials")

    async def test_types_filter(self, tmp_path: Path, store, pid_sd_jwt: str, mdl: str):
        write(tmp_path, "pid", pid_sd_jwt)
        write(tmp_path, "mdl", mdl)
        on_skip = mock.MagicMock()

        loaded = load_credentials(store, tmp_path, types=["pid"], on_skip=on_skip)

        assert loaded == ["pid"]
        on_skip.assert_called_once_with("mdl", "not included in credential types")

    async def test_invalid_file_skipped(
        self, tmp_path: Path, store, pid_sd_jwt: str
    ):
        write(tmp_path, "broken", "not a credential")
        write(tmp_path, "pid", pid_sd_jwt)
        on_skip = mock.MagicMock()

        loaded = load_credentials(store, tmp_path, on_skip=on_skip)

        assert loaded == ["pid"]
        assert on_skip.call_count == 1
        assert on_skip.call_args.args[0] == "broken"

    async def test_duplicate_subject_skipped(self, tmp_path: Path, store, issue_pid):
        write(tmp_path, "a_pid", await issue_pid(given_name="Mario"))
        write(tmp_path, "b_pid", await issue_pid(given_name="Luigi"))
        on_skip = mock.MagicMock()

        loaded = load_credentials(store, tmp_path, on_skip=on_skip)

        assert loaded == ["a_pid"]
        assert "b_pid" not in store
        name, reason = on_skip.call_args.args
        assert name == "b_pid"
        assert "a_pid" in reason

    async def test_profile_violation_skipped(
        self, tmp_path: Path, store, mdoc_issuer: dict, holder_signer
    ):
        incomplete = await issue_mdoc(
            MDL_DOCTYPE,
            {MDL_NAMESPACE: {"family_name": "Rossi", "issuing_country": "IT"}},
            holder_signer.public_jwk,
            mdoc_issuer["signer"],
            mdoc_issuer["certificate_der"],
        )
        write(tmp_path, "mdl", incomplete)
        on_skip = mock.MagicMock()

        assert load_credentials(store, tmp_path, on_skip=on_skip) == []
        assert "issuing_authority" in on_skip.call_args.args[1]

        handlers = FormatHandlers()
        handlers.register(MsoMdocFormatHandler(check_profile=False))
        assert load_credentials(store, tmp_path, handlers=handlers) == ["mdl"]

    async def test_skips_are_logged(
        self, tmp_path: Path, store, caplog: pytest.LogCaptureFixture
    ):
        write(tmp_path, "broken", "not a credential")

        with caplog.at_level("WARNING", logger="oid4vp_wallet.loader"):
            load_credentials(store, tmp_path)

        assert "Skipping local credential 'broken'" in caplog.text

    async def test_nested_digests_not_an_array_skipped(
        self, tmp_path: Path, store, pid_sd_jwt: str
    ):
        header = dict_to_b64({"alg": "ES256", "typ": "dc+sd-jwt"})
        payload = dict_to_b64({"vct": "urn:eudi:pid:1", "address": {"_sd": 5}})
        write(tmp_path, "broken", f"{header}.{payload}.c2ln~")
        write(tmp_path, "pid", pid_sd_jwt)
        on_skip = mock.MagicMock()

        loaded = load_credentials(store, tmp_path, on_skip=on_skip)

        assert loaded == ["pid"]
        on_skip.assert_called_once()
        assert on_skip.call_args.args[0] == "broken"

    async def test_protected_header_not_a_map_skipped(
        self, tmp_path: Path, store, mdl: str
    ):
        issuer_signed = cbor2.loads(b64_to_bytes(mdl, urlsafe=True))
        issuer_signed["issuerAuth"][0] = cbor2.dumps(5)
        broken = bytes_to_b64(cbor2.dumps(issuer_signed), urlsafe=True, pad=False)
        write(tmp_path, "broken", broken)
        write(tmp_path, "mdl", mdl)
        on_skip = mock.MagicMock()

        loaded = load_credentials(store, tmp_path, on_skip=on_skip)

        assert loaded == ["mdl"]
        on_skip.assert_called_once()
        assert on_skip.call_args.args[0] == "broken"


class TestIssuerVerification:
    async def test_tampered_sd_jwt_skipped(
        self, tmp_path: Path, store, pid_sd_jwt: str, issuer_signer: AskarSigner
    ):
        issuer_jwt, rest = pid_sd_jwt.split("~", 1)
        header, payload, signature = issuer_jwt.split(".")
        claims = dict(b64_to_dict(payload))
        claims["iss"] = "https://attacker.example.org"
        tampered = f"{header}.{dict_to_b64(claims)}.{signature}~{rest}"
        write(tmp_path, "pid", pid_sd_jwt)
        write(tmp_path, "tampered", tampered)
        on_skip = mock.MagicMock()

        loaded = load_credentials(
            store, tmp_path, on_skip=on_skip, issuer_jwk=issuer_signer.public_jwk
        )

        assert loaded == ["pid"]
        name, reason = on_skip.call_args.args
        assert name == "tampered"
        assert "does not verify" in reason

    async def test_sd_jwt_from_other_issuer_skipped(
        self, tmp_path: Path, store, pid_sd_jwt: str
    ):
        write(tmp_path, "pid", pid_sd_jwt)
        on_skip = mock.MagicMock()

        loaded = load_credentials(
            store,
            tmp_path,
            on_skip=on_skip,
            issuer_jwk=AskarSigner.generate().public_jwk,
        )

        assert loaded == []
        assert on_skip.call_args.args[0] == "pid"

    async def test_unchecked_without_issuer_key(
        self, tmp_path: Path, store, pid_sd_jwt: str
    ):
        issuer_jwt, rest = pid_sd_jwt.split("~", 1)
        header, payload, signature = issuer_jwt.split(".")
        claims = dict(b64_to_dict(payload))
        claims["iss"] = "https://attacker.example.org"
        tampered = f"{header}.{dict_to_b64(claims)}.{signature}~{rest}"
        write(tmp_path, "tampered", tampered)

        assert load_credentials(store, tmp_path) == ["tampered"]

    async def test_mdoc_trust_anchor(
        self, tmp_path: Path, store, mdl: str, mdoc_issuer: dict
    ):
        write(tmp_path, "mdl", mdl)
        anchor = x509.load_pem_x509_certificate(
            mdoc_issuer["certificate_pem"].encode()
        )

        assert load_credentials(store, tmp_path, trust_anchors=[anchor]) == ["mdl"]

    async def test_mdoc_untrusted_issuer_skipped(
        self, tmp_path: Path, store, mdl: str
    ):
        write(tmp_path, "mdl", mdl)
        other = generate_issuer_material()
        anchor = x509.load_pem_x509_certificate(other["certificate_pem"].encode())
        on_skip = mock.MagicMock()

        loaded = load_credentials(
            store, tmp_path, on_skip=on_skip, trust_anchors=[anchor]
        )

        assert loaded == []
        name, reason = on_skip.call_args.args
        assert name == "mdl"
        assert "not trusted" in reason
