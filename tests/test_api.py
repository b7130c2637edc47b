"""
Tests for FastAPI endpoints.
"""
from graph_builders import linear_graph


class TestServiceEndpoints:
    """Liveness endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "node_kinds": 21}


class TestRegistryEndpoints:
    """Node kind catalogue."""

    def test_list_kinds(self, client):
        response = client.get("/api/registry")
        assert response.status_code == 200

        kinds = {info["kind"]: info for info in response.json()}
        assert len(kinds) == 21
        assert kinds["Concat"]["min_inputs"] == 2
        assert kinds["Conv2d"]["params"]["kernel_size"]["type"] == "number"

    def test_kind_defaults(self, client):
        response = client.get("/api/registry/Linear/defaults")
        assert response.status_code == 200
        assert response.json() == {"in_features": 128, "out_features": 64, "bias": True}

    def test_unknown_kind_defaults(self, client):
        response = client.get("/api/registry/Mystery/defaults")
        assert response.status_code == 404


class TestGraphEndpoints:
    """Inference, validation, normalization and templates."""

    def test_infer(self, client, conv_graph_json):
        response = client.post("/api/graphs/infer", json=conv_graph_json)
        assert response.status_code == 200

        data = response.json()
        assert data["context"]["has_errors"] is False
        assert data["context"]["results"]["pool"]["shape"] == [1, 8, 16, 16]
        assert data["context"]["trace"][0] == "Input in [1,3,32,32]"
        assert data["total_params"] == 224
        assert [i["message"] for i in data["issues"]] == [
            "out is not connected to any downstream node"
        ]

    def test_infer_with_errors_has_no_param_estimate(self, client):
        body = linear_graph(in_features=10).model_dump(mode="json")
        data = client.post("/api/graphs/infer", json=body).json()

        assert data["context"]["has_errors"] is True
        assert data["context"]["results"]["fc"]["status"] == "error"
        assert data["total_params"] is None

    def test_infer_accepts_editor_field_names(self, client):
        body = {
            "nodes": [
                {"id": "in", "type": "Input", "params": {}},
                {"id": "out", "type": "Output"},
            ],
            "edges": [{"id": "e1", "from": "in", "to": "out"}],
            "inputSpec": {"shape": [1, 5]},
        }
        data = client.post("/api/graphs/infer", json=body).json()

        assert data["context"]["results"]["out"]["shape"] == [1, 5]

    def test_infer_rejects_malformed_body(self, client):
        response = client.post("/api/graphs/infer", json={"nodes": [{"kind": "Input"}]})
        assert response.status_code == 422

    def test_validate(self, client):
        response = client.post("/api/graphs/validate", json={"nodes": [], "edges": []})
        assert response.status_code == 200
        assert [i["level"] for i in response.json()] == ["error", "error"]

    def test_normalize(self, client):
        body = {
            "nodes": [
                {"id": "in", "type": "input", "params": {"shape": [1, 8]}},
                {"id": "fc", "type": "dense", "params": {"in_features": "8", "out_features": 2}},
                {"id": "out", "type": "output"},
            ],
            "edges": [{"from": "in", "to": "fc"}, {"from": "fc", "to": "out"}],
        }
        response = client.post("/api/graphs/normalize", json=body)
        assert response.status_code == 200

        graph = response.json()
        assert [n["kind"] for n in graph["nodes"]] == ["Input", "Linear", "Output"]
        assert graph["nodes"][1]["params"] == {"in_features": 8, "out_features": 2, "bias": True}
        assert graph["input_spec"]["shape"] == [1, 8]

    def test_normalize_invalid_training(self, client):
        response = client.post(
            "/api/graphs/normalize", json={"nodes": [], "training": {"optimizer": "Lion"}}
        )
        assert response.status_code == 422

    def test_templates(self, client):
        response = client.get("/api/graphs/templates")
        assert response.status_code == 200
        assert "residual" in response.json()

        response = client.get("/api/graphs/templates/residual")
        assert response.status_code == 200
        assert {n["kind"] for n in response.json()["nodes"]} >= {"ResidualBlock", "Input", "Output"}

    def test_unknown_template(self, client):
        response = client.get("/api/graphs/templates/nope")
        assert response.status_code == 404


class TestCodegenEndpoints:
    """PyTorch export."""

    def test_pytorch(self, client, conv_graph_json):
        response = client.post("/api/codegen/pytorch", json=conv_graph_json)
        assert response.status_code == 200

        data = response.json()
        assert data["errors"] == []
        assert "class VisualNet(nn.Module):" in data["code"]

    def test_pytorch_whole_float_params(self, client, conv_graph_json):
        for item in conv_graph_json["nodes"]:
            if item["id"] == "conv":
                item["params"].update(kernel_size=3.0, padding=1.0, out_channels=8.0)
        data = client.post("/api/codegen/pytorch", json=conv_graph_json).json()

        assert data["errors"] == []
        assert (
            "nn.Conv2d(in_channels=3, out_channels=8, kernel_size=3, "
            "stride=1, padding=1, dilation=1, bias=True)"
        ) in data["code"]

    def test_pytorch_with_errors(self, client):
        body = linear_graph(in_features=10).model_dump(mode="json")
        data = client.post("/api/codegen/pytorch", json=body).json()

        assert data["code"] == ""
        assert data["errors"] == ["fc: Expected in_features=10 but received 4096"]

    def test_download(self, client, conv_graph_json):
        response = client.post("/api/codegen/pytorch/download", json=conv_graph_json)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/x-python")
        assert response.headers["content-disposition"] == 'attachment; filename="visual_net.py"'
        assert "def main():" in response.text

    def test_download_with_errors(self, client):
        body = linear_graph(in_features=10).model_dump(mode="json")
        response = client.post("/api/codegen/pytorch/download", json=body)

        assert response.status_code == 422
        assert response.json()["detail"] == ["fc: Expected in_features=10 but received 4096"]
