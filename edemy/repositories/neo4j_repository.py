import logging
from typing import Dict, List

from edemy.config.database import get_neo4j_driver


class Neo4jRepository:
    """
    Grafo de aprendizaje en Neo4j: usuarios, cursos y categorías.
    Sin driver configurado todas las operaciones son no-op.
    """

    @property
    def driver(self):
        return get_neo4j_driver()

    @property
    def enabled(self) -> bool:
        return self.driver is not None

    # ===============================================================
    # 📚 Nodos
    # ===============================================================
    def upsert_course_node(self, course_id: str, title: str, category: str, instructor_id: str):
        if not self.enabled:
            return
        with self.driver.session() as session:
            session.run(
                """
                MERGE (c:Course {id: $cid})
                SET c.title = $title, c.category = $category
                MERGE (cat:Category {name: $category})
                MERGE (c)-[:IN_CATEGORY]->(cat)
                MERGE (i:User {id: $iid})
                MERGE (i)-[:TEACHES]->(c)
                """,
                cid=course_id,
                title=title,
                category=category,
                iid=instructor_id,
            )

    def delete_course_node(self, course_id: str):
        if not self.enabled:
            return
        with self.driver.session() as session:
            session.run("MATCH (c:Course {id: $cid}) DETACH DELETE c", cid=course_id)

    def delete_user_node(self, user_id: str):
        if not self.enabled:
            return
        with self.driver.session() as session:
            session.run("MATCH (u:User {id: $uid}) DETACH DELETE u", uid=user_id)

    # ===============================================================
    # 🎓 Inscripciones
    # ===============================================================
    def upsert_enrollment(self, user_id: str, course_id: str, status: str, progress: int = 0):
        """(u)-[:ENROLLED_IN {status, progress}]->(c)"""
        if not self.enabled:
            return
        with self.driver.session() as session:
            session.run(
                """
                MERGE (u:User {id: $uid})
                MERGE (c:Course {id: $cid})
                MERGE (u)-[r:ENROLLED_IN]->(c)
                SET r.status = $status, r.progress = $progress
                """,
                uid=user_id,
                cid=course_id,
                status=status,
                progress=progress,
            )

    def remove_enrollment(self, user_id: str, course_id: str):
        if not self.enabled:
            return
        with self.driver.session() as session:
            session.run(
                "MATCH (:User {id: $uid})-[r:ENROLLED_IN]->(:Course {id: $cid}) DELETE r",
                uid=user_id,
                cid=course_id,
            )

    # ===============================================================
    # 🎯 Intereses
    # ===============================================================
    def set_interests(self, user_id: str, categories: List[str]):
        if not self.enabled:
            return
        with self.driver.session() as session:
            session.run(
                "MATCH (:User {id: $uid})-[r:INTERESTED_IN]->(:Category) DELETE r",
                uid=user_id,
            )
            session.run(
                """
                MERGE (u:User {id: $uid})
                WITH u
                UNWIND $cats AS name
                MERGE (cat:Category {name: name})
                MERGE (u)-[:INTERESTED_IN]->(cat)
                """,
                uid=user_id,
                cats=categories,
            )

    # ===============================================================
    # 💡 Recomendaciones: "otros alumnos también se inscribieron en"
    # ===============================================================
    def also_enrolled(self, user_id: str, limit: int = 50) -> Dict[str, int]:
        """courseId → cantidad de compañeros que también lo cursan."""
        if not self.enabled:
            return {}
        with self.driver.session() as session:
            result = session.run(
                """
                MATCH (u:User {id: $uid})-[:ENROLLED_IN]->(:Course)<-[:ENROLLED_IN]-(peer:User)
                MATCH (peer)-[:ENROLLED_IN]->(rec:Course)
                WHERE NOT (u)-[:ENROLLED_IN]->(rec)
                RETURN rec.id AS courseId, COUNT(DISTINCT peer) AS peers
                ORDER BY peers DESC
                LIMIT $limit
                """,
                uid=user_id,
                limit=limit,
            )
            return {r["courseId"]: int(r["peers"]) for r in result}
