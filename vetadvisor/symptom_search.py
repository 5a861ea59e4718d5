import logging

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from .database import Symptom

logger = logging.getLogger(__name__)


class SymptomSearch:
    """Free-text lookup over symptom names, tolerant of partial words."""

    def __init__(self, min_score: float = 0.1):
        self.min_score = min_score

    def rank(self, query, symptoms, limit=5):
        """Return [(score, symptom)] best first; symptoms need a `.name`."""
        query = (query or "").strip().lower()
        if not query or not symptoms:
            return []

        # char n-grams so "diarr" still finds "diarrhea"
        vectorizer = TfidfVectorizer(analyzer="char_wb", ngram_range=(2, 4), lowercase=True)
        corpus = [s.name for s in symptoms]
        tfidf_matrix = vectorizer.fit_transform(corpus + [query])

        # query (last row) against every symptom name
        cosine_sim = cosine_similarity(tfidf_matrix[-1], tfidf_matrix[:-1])[0]
        scored = sorted(enumerate(cosine_sim), key=lambda x: (-x[1], corpus[x[0]]))[:limit]
        return [(round(float(score), 3), symptoms[i]) for i, score in scored if score >= self.min_score]

    def search(self, query, db, limit=5):
        symptoms = db.query(Symptom).order_by(Symptom.code).all()
        results = self.rank(query, symptoms, limit)
        logger.debug(f"Symptom search '{query}' -> {len(results)} hits")
        return results
