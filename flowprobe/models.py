# flowprobe/models.py
"""
Typed representation of a workflow document.

Keys follow the camelCase spelling used in workflow files (``continueOnFail``,
``followRedirects``, ``statusText``); Python attributes are snake_case.
Capture and check blocks are closed models: every kind the engine knows is
a field, so a new kind is a code change, not a free-form dict.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

# A check value is either a literal, an inline regex string or a list of
# assertion dicts (see flowprobe.matcher).
CheckValue = Any


def _as_text(value: Any) -> Any:
    """Rendered scalars in text fields: numbers and booleans as text, absent as empty."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


# A string field that accepts whatever a single `${{ }}` expression rendered to.
Text = Annotated[str, BeforeValidator(_as_text)]


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def dump(self) -> Dict[str, Any]:
        """Dump to the workflow-file spelling, dropping unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class StepFile(_Model):
    """Reference to a file, resolved relative to the workflow file."""
    file: str


FileOrText = Union[StepFile, Text]


# ==================== Credentials ====================

class BasicAuth(_Model):
    username: Text
    password: Text


class BearerAuth(_Model):
    token: Text


class ClientCertificate(_Model):
    cert: Optional[FileOrText] = None
    key: Optional[FileOrText] = None
    passphrase: Optional[Text] = None


class TLSMaterial(_Model):
    root_certs: Optional[FileOrText] = Field(None, alias="rootCerts")
    private_key: Optional[FileOrText] = Field(None, alias="privateKey")
    cert_chain: Optional[FileOrText] = Field(None, alias="certChain")


class Credential(_Model):
    basic: Optional[BasicAuth] = None
    bearer: Optional[BearerAuth] = None
    certificate: Optional[ClientCertificate] = None
    tls: Optional[TLSMaterial] = None


# ==================== Captures ====================

class HTTPStepCapture(_Model):
    """Exactly one extraction kind per capture."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    jsonpath: Optional[str] = None
    xpath: Optional[str] = None
    header: Optional[str] = None
    selector: Optional[str] = None
    cookie: Optional[str] = None
    regex: Optional[str] = None
    body: Optional[bool] = None

    @model_validator(mode="after")
    def _one_kind(self) -> "HTTPStepCapture":
        declared = [k for k in type(self).model_fields if getattr(self, k) is not None]
        if len(declared) != 1:
            raise ValueError(f"a capture needs exactly one extraction kind, got {declared or 'none'}")
        return self

    @property
    def kind(self) -> str:
        return next(k for k in type(self).model_fields if getattr(self, k) is not None)


class GrpcStepCapture(_Model):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    jsonpath: str


# ==================== Checks ====================

class SSLCheck(_Model):
    valid: Optional[bool] = None
    signed: Optional[bool] = None
    days_until_expiration: Optional[CheckValue] = Field(None, alias="daysUntilExpiration")


class HTTPStepCheck(_Model):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    status: Optional[CheckValue] = None
    status_text: Optional[CheckValue] = Field(None, alias="statusText")
    redirected: Optional[bool] = None
    redirects: Optional[CheckValue] = None
    headers: Optional[Dict[str, CheckValue]] = None
    body: Optional[CheckValue] = None
    json_: Optional[Any] = Field(None, alias="json")
    schema_: Optional[Dict[str, Any]] = Field(None, alias="schema")
    jsonpath: Optional[Dict[str, CheckValue]] = None
    xpath: Optional[Dict[str, CheckValue]] = None
    selectors: Optional[Dict[str, CheckValue]] = None
    cookies: Optional[Dict[str, CheckValue]] = None
    captures: Optional[Dict[str, CheckValue]] = None
    sha256: Optional[CheckValue] = None
    md5: Optional[CheckValue] = None
    performance: Optional[Dict[str, CheckValue]] = None
    ssl: Optional[SSLCheck] = None
    size: Optional[CheckValue] = None
    request_size: Optional[CheckValue] = Field(None, alias="requestSize")
    body_size: Optional[CheckValue] = Field(None, alias="bodySize")
    co2: Optional[CheckValue] = None


class GrpcStepCheck(_Model):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    json_: Optional[Any] = Field(None, alias="json")
    schema_: Optional[Dict[str, Any]] = Field(None, alias="schema")
    jsonpath: Optional[Dict[str, CheckValue]] = None
    captures: Optional[Dict[str, CheckValue]] = None
    performance: Optional[Dict[str, CheckValue]] = None
    size: Optional[CheckValue] = None
    co2: Optional[CheckValue] = None


class SSEMessageCheck(_Model):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    id: str
    json_: Optional[Any] = Field(None, alias="json")
    schema_: Optional[Dict[str, Any]] = Field(None, alias="schema")
    jsonpath: Optional[Dict[str, CheckValue]] = None
    body: Optional[CheckValue] = None

    @property
    def expected(self) -> Any:
        for value in (self.body, self.json_, self.jsonpath, self.schema_):
            if value is not None:
                return value
        return None


class SSEStepCheck(_Model):
    messages: List[SSEMessageCheck] = Field(default_factory=list)


# ==================== Steps ====================

class GraphQLPayload(_Model):
    query: str
    variables: Dict[str, Any] = Field(default_factory=dict)


class TRPCPayload(_Model):
    query: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]] = None
    mutation: Optional[Dict[str, Any]] = None


class HTTPStep(_Model):
    url: Text
    method: str = "GET"
    headers: Optional[Dict[str, Text]] = None
    params: Optional[Any] = None
    cookies: Optional[Dict[str, Text]] = None
    body: Optional[FileOrText] = None
    form: Optional[Dict[str, Text]] = None
    form_data: Optional[Dict[str, FileOrText]] = Field(None, alias="formData")
    auth: Optional[Credential] = None
    json_: Optional[Any] = Field(None, alias="json")
    graphql: Optional[GraphQLPayload] = None
    trpc: Optional[TRPCPayload] = None
    captures: Optional[Dict[str, HTTPStepCapture]] = None
    check: Optional[HTTPStepCheck] = None
    follow_redirects: bool = Field(True, alias="followRedirects")
    timeout: Optional[float] = None
    retries: int = 0


class GrpcStepAuth(_Model):
    tls: Optional[TLSMaterial] = None


class GrpcStep(_Model):
    host: Text
    service: str
    method: str
    proto: Optional[Union[str, List[str]]] = None
    data: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]] = None
    metadata: Optional[Dict[str, Any]] = None
    auth: Optional[GrpcStepAuth] = None
    captures: Optional[Dict[str, GrpcStepCapture]] = None
    check: Optional[GrpcStepCheck] = None
    timeout: Optional[float] = None


class SSEStep(_Model):
    url: Text
    headers: Optional[Dict[str, Text]] = None
    params: Optional[Any] = None
    auth: Optional[Credential] = None
    check: Optional[SSEStepCheck] = None
    timeout: Optional[float] = None


class Step(_Model):
    id: Optional[str] = None
    name: Optional[str] = None
    if_: Optional[str] = Field(None, alias="if")
    delay: Optional[Union[str, int, float]] = None
    continue_on_fail: Optional[bool] = Field(None, alias="continueOnFail")
    http: Optional[HTTPStep] = None
    grpc: Optional[GrpcStep] = None
    sse: Optional[SSEStep] = None

    @model_validator(mode="after")
    def _one_protocol(self) -> "Step":
        declared = [p for p in ("http", "grpc", "sse") if getattr(self, p) is not None]
        if len(declared) > 1:
            raise ValueError(f"a step can declare only one of http/grpc/sse, got {declared}")
        return self


# ==================== Tests & workflow ====================

class TestDataOptions(_Model):
    __test__ = False

    delimiter: str = ","
    quotechar: str = Field('"', alias="quote")
    headers: bool = True


class TestData(_Model):
    __test__ = False

    content: Optional[str] = None
    file: Optional[str] = None
    options: TestDataOptions = Field(default_factory=TestDataOptions)


class Test(_Model):
    __test__ = False

    steps: List[Step] = Field(default_factory=list)
    name: Optional[str] = None
    env: Dict[str, Any] = Field(default_factory=dict)
    testdata: Optional[TestData] = None
    continue_on_fail: Optional[bool] = Field(None, alias="continueOnFail")


class HTTPConfig(_Model):
    base_url: Optional[str] = Field(None, alias="baseURL")
    reject_unauthorized: Optional[bool] = Field(None, alias="rejectUnauthorized")
    http2: Optional[bool] = None


class GrpcConfig(_Model):
    proto: Optional[Union[str, List[str]]] = None


class WorkflowConfig(_Model):
    continue_on_fail: Optional[bool] = Field(None, alias="continueOnFail")
    concurrency: Optional[int] = None
    http: Optional[HTTPConfig] = None
    grpc: Optional[GrpcConfig] = None


class WorkflowComponents(_Model):
    schemas: Dict[str, Any] = Field(default_factory=dict)
    credentials: Dict[str, Credential] = Field(default_factory=dict)


class Workflow(_Model):
    name: str = "workflow"
    version: Optional[str] = None
    env: Dict[str, Any] = Field(default_factory=dict)
    tests: Dict[str, Test] = Field(default_factory=dict)
    include: List[str] = Field(default_factory=list)
    components: Optional[WorkflowComponents] = None
    config: Optional[WorkflowConfig] = None
