from fastapi import WebSocket


class ConnectionManager:
    """Tenant-scoped websocket fan-out for bed board and department channels."""

    def __init__(self):
        self.department_connections: dict[tuple[str, int], list[WebSocket]] = {}
        self.status_connections: dict[str, list[WebSocket]] = {}

    async def connect_department(self, tenant_id: str, department_id: int, ws: WebSocket):
        await ws.accept()
        self.department_connections.setdefault((tenant_id, department_id), []).append(ws)

    def disconnect_department(self, tenant_id: str, department_id: int, ws: WebSocket):
        key = (tenant_id, department_id)
        conns = self.department_connections.get(key, [])
        if ws in conns:
            conns.remove(ws)
        if not conns and key in self.department_connections:
            del self.department_connections[key]

    async def broadcast_department(self, tenant_id: str, department_id: int, data: dict):
        for ws in list(self.department_connections.get((tenant_id, department_id), [])):
            try:
                await ws.send_json(data)
            except Exception:
                self.disconnect_department(tenant_id, department_id, ws)

    async def connect_status(self, tenant_id: str, ws: WebSocket):
        await ws.accept()
        self.status_connections.setdefault(tenant_id, []).append(ws)

    def disconnect_status(self, tenant_id: str, ws: WebSocket):
        conns = self.status_connections.get(tenant_id, [])
        if ws in conns:
            conns.remove(ws)
        if not conns and tenant_id in self.status_connections:
            del self.status_connections[tenant_id]

    async def broadcast_status(self, tenant_id: str, data: dict):
        for ws in list(self.status_connections.get(tenant_id, [])):
            try:
                await ws.send_json(data)
            except Exception:
                self.disconnect_status(tenant_id, ws)


manager = ConnectionManager()
