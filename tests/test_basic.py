def test_healthcheck(client):
    url = "/api/health"
    res = client.get(url)
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_openapi_schema_lists_response_endpoints(client, users, auth_header):
    res = client.get(
        "/api/schema",
        HTTP_ACCEPT="application/vnd.oai.openapi+json",
        **auth_header(users.alice),
    )
    assert res.status_code == 200
    paths = res.json()["paths"]
    assert "/api/campaigns/{campaign_urn}/responses" in paths
    assert "/api/omh/v1/{schema_id}/{version}/data" in paths
    assert "/api/omh/v1/{schema_id}/{version}" in paths
