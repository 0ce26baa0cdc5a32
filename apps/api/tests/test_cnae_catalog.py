import httpx
import pytest

from services import cnae_catalog


CNAES = [{"id": "4520001", "descricao": "Manutenção e reparação mecânica de veículos"}]


@pytest.mark.asyncio
async def test_catalog_is_fetched_once_and_served_from_cache(api_client, upstream, provider_keys, auth_headers):
    upstream.handler = lambda request: httpx.Response(200, json=CNAES)

    first = await api_client.get("/catalog/cnaes", headers=auth_headers)
    second = await api_client.get("/catalog/cnaes", headers=auth_headers)

    assert first.status_code == 200
    assert first.json() == {"success": True, "cnaes": CNAES}
    assert second.json() == first.json()
    assert len(upstream.calls) == 1
    assert upstream.calls[0].url.params["token"] == "test-lista_cnae_token"


@pytest.mark.asyncio
async def test_catalog_falls_through_auth_variants(upstream, provider_keys):
    def _handler(request):
        if "token" in request.url.params:
            return httpx.Response(200, text="<html><body>login</body></html>")
        return httpx.Response(200, json={"cnaes": CNAES})

    upstream.handler = _handler

    catalog = await cnae_catalog.get_cnae_catalog()

    assert catalog == CNAES
    assert len(upstream.calls) == 2
    assert upstream.calls[1].headers["Authorization"] == "test-lista_cnae_token"


@pytest.mark.asyncio
async def test_catalog_failure_after_every_attempt(api_client, upstream, provider_keys, auth_headers):
    upstream.handler = lambda request: httpx.Response(401, json={"message": "unauthorized"})

    response = await api_client.get("/catalog/cnaes", headers=auth_headers)

    assert response.status_code == 500
    assert response.json()["code"] == "upstream_error"
    assert "test-lista_cnae_token" not in response.text
    assert len(upstream.calls) == 5


@pytest.mark.asyncio
async def test_empty_catalog_is_not_cached(upstream, provider_keys):
    upstream.handler = lambda request: httpx.Response(200, json=[])

    assert await cnae_catalog.get_cnae_catalog() == []
    assert await cnae_catalog.get_cnae_catalog() == []
    assert len(upstream.calls) == 2


@pytest.mark.asyncio
async def test_cached_catalog_is_not_mutated_by_callers(upstream, provider_keys):
    upstream.handler = lambda request: httpx.Response(200, json=CNAES)

    catalog = await cnae_catalog.get_cnae_catalog()
    catalog.clear()

    assert await cnae_catalog.get_cnae_catalog() == CNAES


@pytest.mark.asyncio
async def test_municipio_catalog(api_client, upstream, provider_keys, auth_headers):
    upstream.handler = lambda request: httpx.Response(
        200, json={"municipios": [{"codigo": "3509502", "nome": "Campinas", "uf": "SP"}]}
    )

    response = await api_client.get("/catalog/municipios", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["municipios"] == [{"id": 3509502, "nome": "Campinas", "uf": "SP"}]
    assert upstream.calls[0].url.path == "/municipios"


@pytest.mark.asyncio
async def test_catalog_requires_authentication(api_client, upstream):
    response = await api_client.get("/catalog/cnaes")

    assert response.status_code == 401
    assert upstream.calls == []
