"""Tests for the document annotation backend, PDF assembly and chunk storage."""

import json

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from conftest import PNG_1X1, make_classification, make_pages
from contract_ai.core.exceptions import (
    APIClientError,
    ExtractionError,
    MalformedOutputError,
    SchemaViolationError,
    StorageError,
)
from contract_ai.models.page_models import CriticalPage, Page
from contract_ai.services.annotation.mistral_annotation_service import (
    SCHEMA_NAME,
    MistralAnnotationService,
    parse_document_annotation,
)
from contract_ai.services.annotation.pdf_assembler import assemble_pdf_chunk
from contract_ai.services.storage_service import StorageService

SUPABASE_URL = "https://sb.test"


def numbered_critical_pages(count):
    return [
        CriticalPage(page_number=n, label=f"RPA PAGE {n}", classification=make_classification(n))
        for n in range(1, count + 1)
    ]


def annotation_reply(extractions, as_string=True):
    body = {"extractions": extractions}
    return {"pages": [], "document_annotation": json.dumps(body) if as_string else body}


def echo_reply(payload):
    """Answer with one extraction per page listed in the instruction."""
    instruction = payload["document_annotation_format"]["json_schema"]["description"]
    count = sum(1 for line in instruction.splitlines() if line.startswith("- Page "))
    return annotation_reply([{"purchasePrice": 1} for _ in range(count)])


@pytest.fixture
def mistral_client():
    client = MagicMock()
    client.call_api = AsyncMock()
    return client


class TestAssemblePdfChunk:

    def test_builds_pdf_with_page_mapping(self, critical_pages, page_map):
        images = [page_map[c.page_number] for c in critical_pages]

        chunk = assemble_pdf_chunk(critical_pages, images)

        assert chunk.pdf_bytes.startswith(b"%PDF")
        assert [(m.chunk_index, m.page_number) for m in chunk.page_mapping] == [(0, 1), (1, 3)]
        assert [m.form_code for m in chunk.page_mapping] == ["RPA", "SCO"]
        assert [m.page_role for m in chunk.page_mapping] == ["main_contract", "counter_offer"]

    def test_unclassified_page_has_no_role(self):
        page = CriticalPage(page_number=2, label="PAGE 2 – KEY CONTRACT PAGE")

        chunk = assemble_pdf_chunk([page], [Page(page_number=2, image=PNG_1X1)])

        assert chunk.page_mapping[0].page_role is None
        assert chunk.page_mapping[0].form_code is None

    def test_rejects_oversized_chunk(self):
        with pytest.raises(ValueError, match="too large"):
            assemble_pdf_chunk(numbered_critical_pages(9), make_pages(9))

    @pytest.mark.parametrize("count,image_count", [(0, 0), (2, 1)])
    def test_rejects_empty_or_mismatched(self, count, image_count):
        with pytest.raises(ValueError):
            assemble_pdf_chunk(numbered_critical_pages(count), make_pages(image_count))


class TestParseDocumentAnnotation:

    @pytest.mark.parametrize("as_string", [True, False])
    def test_string_or_object_annotation(self, as_string):
        response = annotation_reply([{"purchasePrice": 1}], as_string=as_string)

        assert parse_document_annotation(response) == [{"purchasePrice": 1}]

    @pytest.mark.parametrize(
        "response",
        [{}, {"document_annotation": {"pages": []}}, {"document_annotation": {"extractions": "x"}}],
    )
    def test_missing_extractions(self, response):
        with pytest.raises(SchemaViolationError):
            parse_document_annotation(response)

    @pytest.mark.parametrize("response", [None, [], "document_annotation"])
    def test_non_object_response(self, response):
        with pytest.raises(SchemaViolationError, match="Unexpected Mistral response type"):
            parse_document_annotation(response)

    def test_string_without_json(self):
        with pytest.raises(MalformedOutputError):
            parse_document_annotation({"document_annotation": "no json here"})


class TestMistralAnnotationService:

    @pytest.mark.asyncio
    async def test_extract_maps_records_back_to_pages(self, mistral_client, critical_pages, page_map):
        mistral_client.call_api.return_value = annotation_reply([
            {"pageNumber": 99, "purchasePrice": 500000},
            {"purchasePrice": 510000, "formCode": "WRONG"},
        ])
        service = MistralAnnotationService("key", client=mistral_client)

        records = await service.extract(critical_pages, page_map)

        assert [r["pageNumber"] for r in records] == [1, 3]
        assert [r["purchasePrice"] for r in records] == [500000, 510000]
        assert records[1]["formCode"] == "SCO"
        assert records[1]["pageRole"] == "counter_offer"
        assert records[1]["pageLabel"] == "SCO PAGE 1 – TRANSACTION TERMS (FILLED)"

        payload = mistral_client.call_api.await_args.kwargs["payload"]
        assert payload["model"] == "mistral-ocr-latest"
        assert payload["document"]["type"] == "document_url"
        assert payload["document"]["document_url"].startswith("data:application/pdf;base64,")
        schema = payload["document_annotation_format"]["json_schema"]
        assert schema["name"] == SCHEMA_NAME
        assert schema["strict"] is True
        assert "RPA PAGE 1" in schema["description"]
        assert schema["schema"]["required"] == ["extractions"]

    @pytest.mark.asyncio
    async def test_prompt_override_becomes_instruction(self, mistral_client, critical_pages, page_map):
        mistral_client.call_api.return_value = annotation_reply([{}, {}])
        service = MistralAnnotationService("key", client=mistral_client)

        await service.extract(critical_pages, page_map, prompt="re-read the price")

        payload = mistral_client.call_api.await_args.kwargs["payload"]
        assert payload["document_annotation_format"]["json_schema"]["description"] == "re-read the price"

    @pytest.mark.asyncio
    async def test_pages_are_chunked(self, mistral_client):
        mistral_client.call_api.side_effect = lambda payload: echo_reply(payload)
        pages = {p.page_number: p for p in make_pages(10)}
        service = MistralAnnotationService("key", chunk_size=4, client=mistral_client)

        records = await service.extract(numbered_critical_pages(10), pages)

        assert mistral_client.call_api.await_count == 3
        assert [r["pageNumber"] for r in records] == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_short_chunk_reply_only_warns(self, mistral_client, critical_pages, page_map):
        mistral_client.call_api.return_value = annotation_reply([{"purchasePrice": 1}])
        service = MistralAnnotationService("key", client=mistral_client)

        records = await service.extract(critical_pages, page_map)

        assert [r["pageNumber"] for r in records] == [1]

    @pytest.mark.asyncio
    async def test_failing_chunk_fails_the_call(self, mistral_client, critical_pages, page_map):
        mistral_client.call_api.side_effect = APIClientError("API Client Error 422")
        service = MistralAnnotationService("key", client=mistral_client)

        with pytest.raises(ExtractionError, match="422"):
            await service.extract(critical_pages, page_map)

    @pytest.mark.asyncio
    async def test_unexpected_chunk_failure_fails_the_call(self, mistral_client, critical_pages, page_map):
        mistral_client.call_api.side_effect = RuntimeError("connection pool closed")
        service = MistralAnnotationService("key", client=mistral_client)

        with pytest.raises(ExtractionError, match="RuntimeError") as exc:
            await service.extract(critical_pages, page_map)

        assert isinstance(exc.value.original_error, RuntimeError)

    @pytest.mark.asyncio
    async def test_reply_without_extractions_fails_the_call(self, mistral_client, critical_pages, page_map):
        mistral_client.call_api.return_value = {"document_annotation": None}
        service = MistralAnnotationService("key", client=mistral_client)

        with pytest.raises(ExtractionError) as exc:
            await service.extract(critical_pages, page_map)

        assert isinstance(exc.value.original_error, SchemaViolationError)

    @pytest.mark.asyncio
    async def test_empty_reply_fails_the_call(self, mistral_client, critical_pages, page_map):
        mistral_client.call_api.return_value = annotation_reply([])
        service = MistralAnnotationService("key", client=mistral_client)

        with pytest.raises(ExtractionError):
            await service.extract(critical_pages, page_map)

    @pytest.mark.parametrize("chunk_size", [0, 9])
    def test_chunk_size_bounds(self, chunk_size):
        with pytest.raises(ValueError):
            MistralAnnotationService("key", chunk_size=chunk_size, client=MagicMock())

    @pytest.mark.asyncio
    async def test_uses_signed_storage_url_when_configured(self, mistral_client, critical_pages, page_map):
        storage = MagicMock()
        storage.upload_and_sign = AsyncMock(return_value="https://sb.test/signed/chunk-1.pdf?token=t")
        mistral_client.call_api.return_value = annotation_reply([{}, {}])
        service = MistralAnnotationService("key", storage=storage, signed_url_ttl=60, client=mistral_client)

        await service.extract(critical_pages, page_map)

        pdf_bytes, path = storage.upload_and_sign.await_args.args
        assert pdf_bytes.startswith(b"%PDF")
        assert path.endswith("/chunk-1.pdf")
        assert storage.upload_and_sign.await_args.kwargs["expires_in"] == 60
        payload = mistral_client.call_api.await_args.kwargs["payload"]
        assert payload["document"]["document_url"] == "https://sb.test/signed/chunk-1.pdf?token=t"


class TestStorageService:

    @pytest.mark.asyncio
    async def test_upload_and_sign(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if "/object/sign/" in request.url.path:
                return httpx.Response(
                    200, json={"signedURL": "/object/sign/contract-chunks/run/chunk-1.pdf?token=t"}
                )
            return httpx.Response(200, json={"Key": "contract-chunks/run/chunk-1.pdf"})

        storage = StorageService(SUPABASE_URL, "service-key", transport=httpx.MockTransport(handler))

        url = await storage.upload_and_sign(b"%PDF-1.4", "run/chunk-1.pdf", expires_in=120)

        assert url == f"{SUPABASE_URL}/storage/v1/object/sign/contract-chunks/run/chunk-1.pdf?token=t"
        upload, sign = seen
        assert upload.url.path == "/storage/v1/object/contract-chunks/run/chunk-1.pdf"
        assert upload.headers["Content-Type"] == "application/pdf"
        assert upload.headers["apikey"] == "service-key"
        assert upload.content == b"%PDF-1.4"
        assert json.loads(sign.content) == {"expiresIn": 120}

    @pytest.mark.asyncio
    async def test_full_storage_path_is_prefixed_with_host(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"signedURL": "/storage/v1/object/sign/b/x?token=t"})
        )
        storage = StorageService(SUPABASE_URL + "/", "k", bucket="b", transport=transport)

        assert await storage.get_signed_url("x") == f"{SUPABASE_URL}/storage/v1/object/sign/b/x?token=t"

    @pytest.mark.asyncio
    async def test_upload_failure(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(400, text="Bucket not found"))
        storage = StorageService(SUPABASE_URL, "k", transport=transport)

        with pytest.raises(StorageError, match="Bucket not found"):
            await storage.upload_bytes(b"data", "x.pdf")

    @pytest.mark.asyncio
    async def test_missing_signed_url(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
        storage = StorageService(SUPABASE_URL, "k", transport=transport)

        with pytest.raises(StorageError, match="signedURL"):
            await storage.get_signed_url("x.pdf")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        storage = StorageService(SUPABASE_URL, "k", transport=httpx.MockTransport(handler))

        with pytest.raises(StorageError):
            await storage.upload_bytes(b"data", "x.pdf")
