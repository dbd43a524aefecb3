from typing import Any, Dict, List, Optional, Sequence, Tuple
from datetime import datetime

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument

from edemy.config.database import get_mongo_db


def to_object_id(value: Any) -> Optional[ObjectId]:
    """ObjectId para un id str/ObjectId, o None si no es un id válido."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def clean(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Copia del documento con `_id` expuesto como `id` (str)."""
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


class MongoRepository:
    def __init__(self, collection_name: str):
        self.collection_name = collection_name

    @property
    def col(self):
        # 🔗 resuelto en cada acceso: permite cambiar de cliente (tests, scripts)
        return get_mongo_db()[self.collection_name]

    # -------------------- CRUD --------------------
    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.utcnow()
        data.setdefault("createdAt", now)
        data.setdefault("updatedAt", now)
        res = self.col.insert_one(data)
        return self.col.find_one({"_id": res.inserted_id})

    def find_one(self, _id: Any) -> Optional[Dict[str, Any]]:
        oid = to_object_id(_id)
        if oid is None:
            return None
        return self.col.find_one({"_id": oid})

    def find_one_by(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.col.find_one(query)

    def find(
        self,
        query: Dict[str, Any],
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        cursor = self.col.find(query)
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def count(self, query: Dict[str, Any]) -> int:
        return self.col.count_documents(query)

    def paginate(
        self,
        query: Dict[str, Any],
        page: int = 1,
        limit: int = 10,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        page = max(int(page), 1)
        limit = max(int(limit), 1)
        total = self.count(query)
        items = self.find(query, sort=sort, skip=(page - 1) * limit, limit=limit)
        return items, total

    def update(self, _id: Any, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """$set de campos planos; devuelve el documento actualizado."""
        updates = dict(updates)
        updates["updatedAt"] = datetime.utcnow()
        return self.apply(_id, {"$set": updates})

    def apply(self, _id: Any, operations: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update con operadores arbitrarios ($inc, $push, $unset...)."""
        oid = to_object_id(_id)
        if oid is None:
            return None
        return self.col.find_one_and_update(
            {"_id": oid}, operations, return_document=ReturnDocument.AFTER
        )

    def delete(self, _id: Any) -> bool:
        oid = to_object_id(_id)
        if oid is None:
            return False
        return self.col.delete_one({"_id": oid}).deleted_count > 0


def pagination(page: int, limit: int, total: int, noun: str = "items") -> Dict[str, Any]:
    pages = (total + limit - 1) // limit if limit else 0
    return {
        "currentPage": page,
        "totalPages": pages,
        f"total{noun[0].upper()}{noun[1:]}": total,
        "hasNext": page < pages,
        "hasPrev": page > 1,
    }
