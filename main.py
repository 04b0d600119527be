from sklearn.datasets import load_digits

from umap_core import UMAP

if __name__ == "__main__":

  digits = load_digits()
  x, y = digits.data, digits.target

  reducer = UMAP(n_neighbors=15, min_dist=0.1, random_state=42, verbose=True)
  embedding = reducer.fit_transform(x)
  print("embedding shape:", embedding.shape)

  for label in range(10):
    centre = embedding[y == label].mean(axis=0)
    print("digit", label, "centre", centre)

  # embed held-out points against the fitted model
  new_embedding = reducer.transform(x[:20] + 0.5)
  print("transformed shape:", new_embedding.shape)
